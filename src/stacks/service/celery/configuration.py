import importlib
from typing import Any

from kombu.utils.json import register_type
from pydantic import BaseModel
from pydantic_settings import SettingsConfigDict

from stacks.service.configuration.service_configuration import ServiceConfiguration

BROKER_OPTIONS_PREFIX = "broker_transport_options_"
RESULT_OPTIONS_PREFIX = "result_backend_transport_options_"


class CeleryConfiguration(ServiceConfiguration):
    # Field names match Celery's own setting names, so a dump of this
    # model can be handed to `app.conf.update` as it is.
    # https://docs.celeryq.dev/en/stable/userguide/configuration.html
    broker_url: str = "redis://localhost:6379/0"
    broker_connection_retry_on_startup: bool = True
    broker_transport_options_global_keyprefix: str = "stacks"
    broker_transport_options_visibility_timeout: int = 3600

    result_backend: str = "redis://localhost:6379/1"
    result_backend_transport_options_global_keyprefix: str = "stacks-"
    result_expires: int = 86400

    task_acks_late: bool = True
    task_reject_on_worker_lost: bool = True
    task_create_missing_queues: bool = False
    task_track_started: bool = True
    # A sweep over a large ledger is still well under this.
    task_time_limit: int | None = 1800

    worker_hijack_root_logger: bool = False
    worker_log_color: bool = False
    worker_max_tasks_per_child: int = 100
    worker_prefetch_multiplier: int = 1

    # Beat runs the daily sweeps on this clock.
    timezone: str = "UTC"

    model_config = SettingsConfigDict(env_prefix="STACKS_CELERY_")

    def model_dump(
        self, *, merge_options: bool = True, **kwargs: Any
    ) -> dict[str, Any]:
        """Dump the settings, folding the flattened `*_transport_options_*`
        fields back into the nested dicts Celery expects.
        """
        results = super().model_dump(**kwargs)
        if not merge_options:
            return results

        broker_options: dict[str, Any] = {}
        result_options: dict[str, Any] = {}
        for key in list(results):
            for prefix, options in (
                (BROKER_OPTIONS_PREFIX, broker_options),
                (RESULT_OPTIONS_PREFIX, result_options),
            ):
                if key.startswith(prefix):
                    options[key.removeprefix(prefix)] = results.pop(key)
        results["broker_transport_options"] = broker_options
        results["result_backend_transport_options"] = result_options
        return results


# Teach kombu's JSON serializer about pydantic models, so the sweep tasks
# can return their result models.
# https://docs.celeryq.dev/projects/kombu/en/stable/userguide/serialization.html
def _serialize_model(obj: BaseModel) -> dict[str, Any]:
    cls = type(obj)
    return {
        "module": cls.__module__,
        "name": cls.__qualname__,
        "data": obj.model_dump(mode="json"),
    }


def _deserialize_model(obj: dict[str, Any]) -> BaseModel:
    cls = getattr(importlib.import_module(obj["module"]), obj["name"])
    return cls.model_validate(obj["data"])  # type: ignore[no-any-return]


register_type(BaseModel, "pydantic", _serialize_model, _deserialize_model)
