"""
Error taxonomy for the storefront API.

Every error carries the HTTP status it is rendered with; main.py turns any
ShopError into the ``{"error": message}`` envelope.
"""


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class Unauthorized(ShopError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class Forbidden(ShopError):
    status_code = 403

    def __init__(self, message: str = "Admin access required"):
        super().__init__(message)


class NotFound(ShopError):
    status_code = 404


class ProductNotFound(NotFound):
    def __init__(self, message: str = "Product not found"):
        super().__init__(message)


class LineNotFound(NotFound):
    def __init__(self, message: str = "Cart item not found"):
        super().__init__(message)


class AddressNotFound(NotFound):
    def __init__(self, message: str = "Address not found"):
        super().__init__(message)


class OrderNotFound(NotFound):
    def __init__(self, message: str = "Order not found"):
        super().__init__(message)


class ValidationFailed(ShopError):
    status_code = 400


class QuantityTooLow(ValidationFailed):
    def __init__(self, moq: int):
        super().__init__(f"Minimum order quantity is {moq}")
        self.moq = moq


class InvalidPaymentMethod(ValidationFailed):
    def __init__(self, message: str = "Valid payment method is required (razorpay or cod)"):
        super().__init__(message)


class EmptyCart(ValidationFailed):
    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class WrongMethod(ValidationFailed):
    def __init__(self, message: str = "This order is not for online payment"):
        super().__init__(message)


class Conflict(ShopError):
    # The public status set has no 409; conflicts surface as 400
    status_code = 400


class OutOfStock(Conflict):
    def __init__(self, product_name: str):
        super().__init__(f"{product_name} is out of stock")
        self.product_name = product_name


class AlreadyPaid(Conflict):
    def __init__(self, message: str = "Order is already paid"):
        super().__init__(message)


class InvalidSignature(ShopError):
    status_code = 400

    def __init__(self, message: str = "Invalid payment signature"):
        super().__init__(message)


class UpstreamError(ShopError):
    status_code = 500
