from .user import User
from .credits import CreditBalanceResponse, CreditMutationResult
from .paid_action import PaidActionQuote, PaidActionResult
from .webhook import PaymentWebhook, WebhookResponse
