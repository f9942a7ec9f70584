"""Alert content generation: titles, messages, priorities and call-to-action links."""

from typing import Any, Dict, List, Optional

from .models import Alert, AlertConditions, AlertPriority, AlertType, NotificationChannel

ALERT_TITLES = {
    AlertType.PRICE_DROP: "Price Drop Alert",
    AlertType.HISTORICAL_LOW: "Historical Low Price",
    AlertType.STOCK_AVAILABLE: "Back in Stock",
    AlertType.BACK_IN_STOCK: "Available Again",
    AlertType.PRICE_TARGET: "Target Price Reached",
}

LOCALIZED_MESSAGES = {
    "ja": {
        AlertType.PRICE_DROP: "価格が下がりました！新しい価格をチェックしてください。",
        AlertType.HISTORICAL_LOW: "この商品は90日間で最安値になっています！",
        AlertType.STOCK_AVAILABLE: "良いお知らせ！この商品が利用可能になりました。",
        AlertType.BACK_IN_STOCK: "この商品が再び入荷され、注文できます。",
        AlertType.PRICE_TARGET: "この商品の目標価格に達しました！",
    },
    "en": {
        AlertType.PRICE_DROP: "Price has dropped! Check out the new pricing.",
        AlertType.HISTORICAL_LOW: "This product is at its lowest price in 90 days!",
        AlertType.STOCK_AVAILABLE: "Good news! This product is now available.",
        AlertType.BACK_IN_STOCK: "This product is back in stock and ready to order.",
        AlertType.PRICE_TARGET: "Target price reached for this product!",
    },
}


def generate_alert_title(alert_type: AlertType) -> str:
    return ALERT_TITLES.get(alert_type, "Price Alert")


def generate_alert_message(
    alert_type: AlertType, conditions: Optional[AlertConditions] = None
) -> str:
    """Default English message for a new alert."""
    message = LOCALIZED_MESSAGES["en"].get(
        alert_type, "Price alert for your watched product."
    )
    if conditions is None:
        return message

    if alert_type == AlertType.PRICE_TARGET and conditions.target_price:
        message += f" Target: ¥{conditions.target_price:,.0f}"
    elif alert_type == AlertType.PRICE_DROP and conditions.percentage_drop:
        message += f" Watching for a {conditions.percentage_drop:g}% drop."

    return message


def format_alert_message(alert: Alert, locale: str = "ja") -> str:
    """Localized message for an alert, falling back to the stored text."""
    return LOCALIZED_MESSAGES.get(locale, {}).get(alert.type, alert.message)


def determine_priority(
    alert_type: AlertType, conditions: Optional[AlertConditions] = None
) -> AlertPriority:
    """
    Pick a priority from the alert type and its conditions.

    Historical lows are urgent; price drops scale with the watched percentage.
    """
    if alert_type == AlertType.HISTORICAL_LOW:
        return AlertPriority.URGENT
    if alert_type == AlertType.PRICE_DROP:
        percentage = (conditions.percentage_drop if conditions else None) or 0
        if percentage >= 30:
            return AlertPriority.URGENT
        if percentage >= 15:
            return AlertPriority.HIGH
        return AlertPriority.MEDIUM
    if alert_type in (AlertType.STOCK_AVAILABLE, AlertType.BACK_IN_STOCK):
        return AlertPriority.HIGH
    return AlertPriority.MEDIUM


def default_channels(alert_type: AlertType) -> List[NotificationChannel]:
    if alert_type in (AlertType.HISTORICAL_LOW, AlertType.PRICE_DROP):
        return [NotificationChannel.PUSH, NotificationChannel.EMAIL]
    return [NotificationChannel.PUSH]


def action_url(alert: Alert, base_url: str) -> str:
    if alert.type == AlertType.PRICE_TARGET:
        return f"{base_url}/search?q={alert.alert_data.get('productName', '')}"
    return f"{base_url}/product/{alert.product_id}"


def action_text(alert: Alert) -> str:
    if alert.type in (AlertType.PRICE_DROP, AlertType.HISTORICAL_LOW):
        return "View Deal"
    if alert.type in (AlertType.STOCK_AVAILABLE, AlertType.BACK_IN_STOCK):
        return "Buy Now"
    return "View Product"


def push_actions(alert: Alert, base_url: str) -> List[Dict[str, Any]]:
    """Actionable buttons attached to push notifications, keyed by alert type."""
    if alert.type in (AlertType.PRICE_DROP, AlertType.HISTORICAL_LOW):
        return [
            {
                "action": "view_product",
                "title": "View Product",
                "icon": f"{base_url}/icons/view.png",
            }
        ]
    if alert.type in (AlertType.STOCK_AVAILABLE, AlertType.BACK_IN_STOCK):
        return [
            {
                "action": "buy_now",
                "title": "Buy Now",
                "icon": f"{base_url}/icons/buy.png",
            }
        ]
    return []


def in_app_notification_type(alert_type: AlertType) -> str:
    if alert_type in (AlertType.HISTORICAL_LOW, AlertType.PRICE_DROP):
        return "success"
    return "info"
