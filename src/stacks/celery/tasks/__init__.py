import importlib
import pkgutil


def import_celery_tasks() -> None:
    """Import every module in this package, so the worker registers
    all of the tasks defined with `shared_task`.
    """
    for module in pkgutil.iter_modules(__path__, prefix=f"{__name__}."):
        importlib.import_module(module.name)
