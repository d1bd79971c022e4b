"""
TapCoin - Economy Errors

Ожидаемые (пользовательские) отказы экономики. Рендерятся обработчиком
в main.py как {"success": false, "detail": {"code", "message"}}.
"""


class EconomyError(Exception):
    """Базовый отказ: операция отклонена, состояние не изменено."""

    status_code = 400
    code = "ECONOMY_ERROR"
    message = "Operation rejected"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.message
        if code:
            self.code = code
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFound(EconomyError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Not found"


class InsufficientFunds(EconomyError):
    code = "INSUFFICIENT_FUNDS"
    message = "Insufficient balance"


class InsufficientItems(EconomyError):
    code = "INSUFFICIENT_ITEMS"
    message = "Not enough items"


class InvalidTarget(EconomyError):
    code = "INVALID_TARGET"
    message = "You cannot target yourself"


class AlreadyClaimed(EconomyError):
    status_code = 409
    code = "ALREADY_CLAIMED"
    message = "Already claimed"


class AlreadyCompleted(EconomyError):
    status_code = 409
    code = "ALREADY_COMPLETED"
    message = "Task already completed"


class AlreadyClaimedToday(EconomyError):
    status_code = 409
    code = "ALREADY_CLAIMED_TODAY"
    message = "Daily reward already claimed today"


class InvalidPromoCode(EconomyError):
    code = "PROMO_INVALID"
    message = "Promo code is inactive, expired or exhausted"


class VerificationFailed(EconomyError):
    """
    Проверка подписки не подтвердила участие.

    retryable=True: внешний сервис недоступен (таймаут/ошибка), клиент
    может повторить; иначе пользователь просто не подписан.
    """

    status_code = 409
    code = "VERIFICATION_FAILED"
    message = "Subscription could not be verified"

    def __init__(self, message: str | None = None, *, code: str | None = None, retryable: bool = False):
        super().__init__(message, code=code)
        self.retryable = retryable
        if retryable:
            self.status_code = 503
