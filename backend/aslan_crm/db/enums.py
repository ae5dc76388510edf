import enum


class TaskStatus(str, enum.Enum):
    in_progress = "in_progress"
    under_review = "under_review"
    completed = "completed"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class StartCondition(str, enum.Enum):
    immediate = "immediate"
    after_task = "after_task"
