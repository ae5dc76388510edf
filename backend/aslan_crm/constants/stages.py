"""Built-in production stages and their display names."""

STAGE_NAMES = {
    "cutting": "Распил",
    "edging": "Кромление",
    "drilling": "Присадка",
    "sanding": "Шлифовка",
    "priming": "Грунт",
    "painting": "Покраска",
}


def get_stage_name(stage_id: str) -> str:
    """Display name for a stage; unknown stages fall back to their id."""
    return STAGE_NAMES.get(stage_id, stage_id)
