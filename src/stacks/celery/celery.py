import celery


class Celery(celery.Celery):
    def gen_task_name(self, name: str, module: str) -> str:
        # Register tasks as e.g. "circulation.overdue_sweep" rather than
        # with their full module path.
        return super().gen_task_name(  # type: ignore[no-any-return]
            name, module.removeprefix(f"{__package__}.tasks.")
        )
