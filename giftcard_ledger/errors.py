class GiftCardError(Exception):
    pass


class DuplicateCodeError(GiftCardError):
    def __init__(self, code: str):
        super().__init__(f"Gift card code {code} already exists")
        self.code = code


class PersistenceError(GiftCardError):
    pass


class ConcurrentDebitError(GiftCardError):
    pass


class PurchaseNotFoundError(GiftCardError):
    pass
