from residuals.models.revenue_event import RevenueEvent  # noqa: F401
from residuals.models.deal import Deal  # noqa: F401
from residuals.models.payout import Payout  # noqa: F401
from residuals.models.action_history import ActionHistory  # noqa: F401
