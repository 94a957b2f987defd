"""Predefined notification templates offered to operators."""

from dataclasses import dataclass
from typing import Dict, List

from modules.notifications.errors import TemplateNotFound
from modules.notifications.models import Priority


@dataclass(frozen=True)
class NotificationTemplate:
    template_name: str
    name: str
    title: str
    message: str
    type: str
    priority: Priority
    link: str


_TEMPLATES = [
    NotificationTemplate(
        template_name="analysis_ready",
        name="Analysis Results Ready",
        title="Your Skin/Hair Analysis is Ready! 🔬",
        message="Your personalized analysis results are ready! Check your recommendations and product suggestions.",
        type="info",
        priority=Priority.HIGH,
        link="/analysis-results",
    ),
    NotificationTemplate(
        template_name="product_recommendation",
        name="New Product Recommendation",
        title="Perfect Product Match Found! ✨",
        message="We found products that match your skin/hair profile! Check them out now.",
        type="promo",
        priority=Priority.NORMAL,
        link="/products",
    ),
    NotificationTemplate(
        template_name="analysis_reminder",
        name="Analysis Reminder",
        title="Time for Your Analysis! ⏰",
        message="It's been a while since your last analysis. Update your profile to get fresh recommendations!",
        type="info",
        priority=Priority.NORMAL,
        link="/skin-analysis",
    ),
    NotificationTemplate(
        template_name="new_blog_post",
        name="New Blog Post",
        title="New Beauty Tips Available! 📖",
        message="Check out our latest blog post with expert skincare and haircare tips!",
        type="info",
        priority=Priority.NORMAL,
        link="/blogs",
    ),
    NotificationTemplate(
        template_name="daily_tip",
        name="Daily Beauty Tip",
        title="Your Daily Beauty Tip! 💡",
        message="Did you know? [Tip about skincare/haircare]. Learn more in the app!",
        type="info",
        priority=Priority.LOW,
        link="/",
    ),
    NotificationTemplate(
        template_name="ask_karma_reminder",
        name="Ask Karma Reminder",
        title="Ask Karma Anything! 🤖",
        message="Have questions about your skin or hair? Ask Karma AI for personalized advice!",
        type="info",
        priority=Priority.NORMAL,
        link="/ask-karma",
    ),
    NotificationTemplate(
        template_name="maintenance",
        name="Maintenance Alert",
        title="Scheduled Maintenance 🔧",
        message="We'll be performing maintenance on [date]. Service may be temporarily unavailable.",
        type="alert",
        priority=Priority.HIGH,
        link="/",
    ),
    NotificationTemplate(
        template_name="welcome",
        name="Welcome Message",
        title="Welcome to Karma Terra! 🌱",
        message="Thank you for joining us! Start your journey by analyzing your skin or hair to get personalized recommendations.",
        type="info",
        priority=Priority.NORMAL,
        link="/skin-analysis",
    ),
    NotificationTemplate(
        template_name="product_launch",
        name="New Product Launch",
        title="Exciting New Product Launch! 🎉",
        message="We've just launched a new product that might be perfect for you! Check it out now.",
        type="promo",
        priority=Priority.NORMAL,
        link="/products",
    ),
    NotificationTemplate(
        template_name="seasonal_tip",
        name="Seasonal Care Tip",
        title="Seasonal Skincare/Haircare Tip! 🍂",
        message="As the season changes, your skin and hair needs change too. Get seasonal care tips!",
        type="info",
        priority=Priority.NORMAL,
        link="/blogs",
    ),
]

NOTIFICATION_TEMPLATES: Dict[str, NotificationTemplate] = {
    template.template_name: template for template in _TEMPLATES
}


def get_template(template_name: str) -> NotificationTemplate:
    try:
        return NOTIFICATION_TEMPLATES[template_name]
    except KeyError as exc:
        raise TemplateNotFound(template_name) from exc


def list_templates() -> List[NotificationTemplate]:
    return list(NOTIFICATION_TEMPLATES.values())
