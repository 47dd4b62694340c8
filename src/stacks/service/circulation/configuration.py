import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import Field, NonNegativeInt, PositiveInt
from pydantic_settings import SettingsConfigDict

from stacks.circulation.fines import DamageSeverity
from stacks.service.configuration.service_configuration import ServiceConfiguration

Money = Annotated[Decimal, Field(ge=0, decimal_places=2)]


class CirculationConfiguration(ServiceConfiguration):
    """Library policy for loans, renewals and fines."""

    # Days after the due date before a loan becomes fine-eligible.
    grace_period_days: NonNegativeInt = 2
    daily_fine_rate: Money = Decimal("1.00")

    max_extensions: NonNegativeInt = 2
    max_renewals: NonNegativeInt = 3
    renewal_period_days: PositiveInt = 14

    # Loans due within this many days get a daily DueReminder.
    reminder_window_days: PositiveInt = 2

    lost_processing_fee: Money = Decimal("0.00")
    default_damage_severity: DamageSeverity = DamageSeverity.MODERATE

    # A fine is due for payment this many days after it is created.
    fine_payment_period_days: PositiveInt = 14

    sweep_batch_size: PositiveInt = 500
    # How far back the overdue sweep looks for late returns that are
    # missing their overdue fine.
    late_return_lookback_days: PositiveInt = 30

    model_config = SettingsConfigDict(env_prefix="STACKS_CIRCULATION_")

    @property
    def grace_period(self) -> datetime.timedelta:
        return datetime.timedelta(days=self.grace_period_days)

    @property
    def renewal_period(self) -> datetime.timedelta:
        return datetime.timedelta(days=self.renewal_period_days)

    @property
    def reminder_window(self) -> datetime.timedelta:
        return datetime.timedelta(days=self.reminder_window_days)

    @property
    def fine_payment_period(self) -> datetime.timedelta:
        return datetime.timedelta(days=self.fine_payment_period_days)

    @property
    def late_return_lookback(self) -> datetime.timedelta:
        return datetime.timedelta(days=self.late_return_lookback_days)
