"""
Storefront Service — 通知メールのテンプレート

各テンプレートは render(context) で subject / body (テキスト) / html_body を返す。
HTML は最小限の構造だけを持ち、値はすべてエスケープする。
"""

from html import escape

from .models import OrderEmailContext

STORE_NAME = "TechStore"
SUPPORT_EMAIL = "support@techstore.com"
PAYMENT_LABEL = "Cash on Delivery"
ESTIMATED_DELIVERY = "2-3 business days"


def _items_table(context: OrderEmailContext) -> str:
    rows = "".join(
        "<tr><td>{}</td><td>{}</td><td>${:.2f}</td><td>${:.2f}</td></tr>".format(
            escape(item.name), item.quantity, item.unit_price, item.subtotal
        )
        for item in context.items
    )
    return (
        "<table><thead><tr><th>Product</th><th>Qty</th><th>Price</th><th>Subtotal</th>"
        f"</tr></thead><tbody>{rows}"
        f'<tr><td colspan="3">Total Amount:</td><td>${context.total_amount:.2f}</td></tr>'
        "</tbody></table>"
    )


class CustomerConfirmationTemplate:
    @staticmethod
    def render(context: OrderEmailContext) -> dict:
        customer = context.customer
        order_date = context.order_date.strftime("%B %d, %Y %H:%M")
        return {
            "subject": f"Order Confirmation - {context.order_number} | {STORE_NAME}",
            "body": (
                f"Order Confirmation - {context.order_number}\n\n"
                f"Dear {customer.full_name},\n\n"
                f"Thank you for your order! Your order {context.order_number} "
                "has been received and is being processed.\n\n"
                "Order Details:\n"
                f"- Order Number: {context.order_number}\n"
                f"- Order Date: {order_date}\n"
                f"- Total Amount: ${context.total_amount:.2f}\n"
                f"- Payment: {PAYMENT_LABEL}\n"
                f"- Estimated Delivery: {ESTIMATED_DELIVERY}\n\n"
                "Delivery Address:\n"
                f"{customer.address}\n"
                f"{customer.city}, {customer.postal_code}\n\n"
                "We'll send you another email when your items are on their way.\n\n"
                f"Thank you for choosing {STORE_NAME}!\n\n"
                f"{STORE_NAME} Team\n{SUPPORT_EMAIL}\n"
            ),
            "html_body": (
                f"<h1>{STORE_NAME}</h1>"
                f"<h2>Thank you for your order, {escape(customer.full_name)}!</h2>"
                f"<p><strong>Order Number:</strong> {escape(context.order_number)}</p>"
                f"<p><strong>Order Date:</strong> {order_date}</p>"
                f"<p><strong>Payment Method:</strong> {PAYMENT_LABEL} (COD)</p>"
                f"<p><strong>Estimated Delivery:</strong> {ESTIMATED_DELIVERY}</p>"
                "<h3>Delivery Address</h3>"
                f"<p>{escape(customer.full_name)}<br>{escape(customer.address)}<br>"
                f"{escape(customer.city)}, {escape(customer.postal_code)}<br>"
                f"{escape(customer.phone)}<br>{escape(customer.email)}</p>"
                f"<h3>Order Items</h3>{_items_table(context)}"
                "<p>Payment will be collected at the time of delivery.</p>"
            ),
        }


class BusinessNotificationTemplate:
    @staticmethod
    def render(context: OrderEmailContext) -> dict:
        customer = context.customer
        notes = context.delivery_notes
        return {
            "subject": f"NEW ORDER ALERT - {context.order_number} (${context.total_amount:.2f})",
            "body": (
                f"NEW ORDER ALERT - {context.order_number}\n\n"
                "Order Details:\n"
                f"- Order Number: {context.order_number}\n"
                f"- Customer: {customer.full_name}\n"
                f"- Email: {customer.email}\n"
                f"- Phone: {customer.phone}\n"
                f"- Total: ${context.total_amount:.2f}\n"
                f"- Payment: {PAYMENT_LABEL}\n\n"
                f"Address: {customer.address}, {customer.city}, {customer.postal_code}\n"
                + (f"Special Instructions: {notes}\n" if notes else "")
                + f"\nItems: {len(context.items)} products\n\n"
                "Action Required: Process this order within 24 hours.\n\n"
                f"{STORE_NAME} Admin System\n"
            ),
            "html_body": (
                f"<h1>New Order - {escape(context.order_number)}</h1>"
                f"<p><strong>Order Date:</strong> {context.order_date.isoformat()}</p>"
                f"<p><strong>Payment:</strong> {PAYMENT_LABEL}</p>"
                f"<p><strong>Name:</strong> {escape(customer.full_name)}</p>"
                f'<p><strong>Email:</strong> <a href="mailto:{escape(customer.email)}">'
                f"{escape(customer.email)}</a></p>"
                f"<p><strong>Phone:</strong> {escape(customer.phone)}</p>"
                f"<p><strong>Address:</strong> {escape(customer.address)}, "
                f"{escape(customer.city)}, {escape(customer.postal_code)}</p>"
                + (f"<p><strong>Special Instructions:</strong> {escape(notes)}</p>" if notes else "")
                + _items_table(context)
                + "<ul><li>Process this order within 24 hours</li>"
                "<li>Schedule delivery within 2-3 business days</li>"
                "<li>Update order status in the system</li></ul>"
            ),
        }


class TestEmailTemplate:
    @staticmethod
    def render(recipient: str) -> dict:
        return {
            "subject": f"{STORE_NAME} Email Test - Configuration Successful",
            "body": (
                f"This is a test email from {STORE_NAME}.\n\n"
                f"If you received this message at {recipient}, "
                "the email configuration is working.\n"
            ),
            "html_body": (
                f"<h1>{STORE_NAME} Email Test</h1>"
                f"<p>The email configuration is working for {escape(recipient)}.</p>"
            ),
        }
