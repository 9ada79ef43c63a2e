from html import escape
from typing import Optional

from storefront.core.config import settings

# Currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = {"KRW", "JPY", "VND"}

STRINGS = {
    "en": {
        "subject": "Order Confirmed - #{order_ref}",
        "heading": "Order Confirmation",
        "greeting": "Dear {name},",
        "thanks": "Thank you for your order! Your order #{order_ref} has been confirmed.",
        "item": "Item",
        "qty": "Qty",
        "price": "Price",
        "subtotal": "Subtotal",
        "total": "Total",
        "shipping_to": "Shipping Address",
        "tracking": "Tracking number",
        "view_order": "View your order",
        "customer": "Customer",
    },
    "ko": {
        "subject": "주문 확인 - #{order_ref}",
        "heading": "주문 확인",
        "greeting": "{name}님, 안녕하세요.",
        "thanks": "주문해 주셔서 감사합니다. 주문 #{order_ref}이(가) 확인되었습니다.",
        "item": "상품",
        "qty": "수량",
        "price": "가격",
        "subtotal": "소계",
        "total": "합계",
        "shipping_to": "배송지",
        "tracking": "운송장 번호",
        "view_order": "주문 내역 보기",
        "customer": "고객",
    },
}


def resolve_locale(locale: Optional[str]) -> str:
    if locale and locale.lower()[:2] in STRINGS:
        return locale.lower()[:2]
    return settings.DEFAULT_LOCALE


def format_money(amount_cents: int, currency: str) -> str:
    currency = (currency or "").upper()
    if currency in ZERO_DECIMAL_CURRENCIES:
        return f"{amount_cents:,} {currency}"
    return f"{amount_cents / 100:,.2f} {currency}"


def order_reference(order_id: str) -> str:
    return order_id[:8].upper()


def order_confirmation_subject(receipt, locale: Optional[str] = None) -> str:
    strings = STRINGS[resolve_locale(locale or receipt.locale)]
    return strings["subject"].format(order_ref=order_reference(receipt.order_id))


def order_confirmation_text(receipt, locale: Optional[str] = None) -> str:
    strings = STRINGS[resolve_locale(locale or receipt.locale)]
    order_ref = order_reference(receipt.order_id)
    lines = [
        strings["greeting"].format(name=receipt.buyer_name or strings["customer"]),
        strings["thanks"].format(order_ref=order_ref),
        "",
    ]
    for item in receipt.items:
        lines.append(f"- {item.name} x{item.qty}  {format_money(item.price_cents * item.qty, receipt.currency)}")
    lines.append("")
    lines.append(f"{strings['total']}: {format_money(receipt.total_cents, receipt.currency)}")
    if receipt.tracking_no:
        lines.append(f"{strings['tracking']}: {receipt.carrier or ''} {receipt.tracking_no}".strip())
    lines.append(f"{strings['view_order']}: {settings.FRONTEND_URL}/orders/{receipt.order_id}")
    return "\n".join(lines)


def order_confirmation_template(receipt, locale: Optional[str] = None) -> str:
    """HTML email template for order confirmation"""
    strings = STRINGS[resolve_locale(locale or receipt.locale)]
    order_ref = order_reference(receipt.order_id)

    items_html = ""
    for item in receipt.items:
        items_html += f"""
        <tr>
            <td>{escape(item.name)}</td>
            <td>{item.qty}</td>
            <td>{format_money(item.price_cents, receipt.currency)}</td>
        </tr>
        """

    shipping_html = ""
    if receipt.shipping:
        address = receipt.shipping
        shipping_html = f"""
            <h3>{strings['shipping_to']}:</h3>
            <p>
                {escape(address.get('full_name') or '')}<br>
                {escape(address.get('address1') or '')} {escape(address.get('address2') or '')}<br>
                {escape(address.get('city') or '')} {escape(address.get('postal_code') or '')}<br>
                {escape(address.get('country') or '')}
            </p>
        """

    tracking_html = ""
    if receipt.tracking_no:
        tracking_html = f"<p>{strings['tracking']}: <strong>{escape(receipt.carrier or '')} {receipt.tracking_no}</strong></p>"

    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: Arial, sans-serif; line-height: 1.6; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background: #111827; color: white; padding: 20px; text-align: center; }}
            table {{ width: 100%; border-collapse: collapse; margin: 20px 0; }}
            th, td {{ padding: 10px; text-align: left; border-bottom: 1px solid #ddd; }}
            .total {{ font-size: 18px; font-weight: bold; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>{escape(settings.EMAILS_FROM_NAME)}</h1>
                <p>{strings['heading']}</p>
            </div>

            <p>{strings['greeting'].format(name=escape(receipt.buyer_name or strings['customer']))}</p>
            <p>{strings['thanks'].format(order_ref=order_ref)}</p>

            <table>
                <thead>
                    <tr>
                        <th>{strings['item']}</th>
                        <th>{strings['qty']}</th>
                        <th>{strings['price']}</th>
                    </tr>
                </thead>
                <tbody>
                    {items_html}
                </tbody>
            </table>

            <table>
                <tr>
                    <td>{strings['subtotal']}:</td>
                    <td>{format_money(receipt.subtotal_cents, receipt.currency)}</td>
                </tr>
                <tr class="total">
                    <td>{strings['total']}:</td>
                    <td>{format_money(receipt.total_cents, receipt.currency)}</td>
                </tr>
            </table>

            {shipping_html}
            {tracking_html}

            <p><a href="{settings.FRONTEND_URL}/orders/{receipt.order_id}">{strings['view_order']}</a></p>
        </div>
    </body>
    </html>
    """
