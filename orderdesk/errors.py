class OrderdeskError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthorized(OrderdeskError):
    status_code = 401


class Forbidden(OrderdeskError):
    status_code = 403


class ValidationError(OrderdeskError):
    status_code = 400


class NotFound(OrderdeskError):
    status_code = 404


class InvalidTransition(OrderdeskError):
    status_code = 400


class Conflict(OrderdeskError):
    status_code = 409


class PaymentGatewayError(OrderdeskError):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(f"Payment gateway error: {message}")


class Internal(OrderdeskError):
    status_code = 500
