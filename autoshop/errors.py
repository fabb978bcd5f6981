class OrderRejected(ValueError):
    """Input refused at order creation; no order is created.

    ``message`` is safe to show to the buyer.
    """

    code = "order_rejected"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidQuantity(OrderRejected):
    code = "invalid_quantity"


class ProductNotFound(OrderRejected):
    code = "product_not_found"
    status_code = 404


class InsufficientStock(OrderRejected):
    code = "insufficient_stock"
