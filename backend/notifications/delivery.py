"""Email and live socket delivery for freshly created notifications"""
import logging
from smtplib import SMTPException

from django.conf import settings
from django.core.mail import send_mail

from .service import render_template_text

logger = logging.getLogger('backend.notifications')


def send_email_notifications(users, title, message, template=None, data=None):
    subject = (template and render_template_text(template.email_subject, data)) or title
    body = (template and render_template_text(template.email_body, data)) or message
    sent = 0
    for user in users:
        try:
            send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [user.email], fail_silently=False)
            sent += 1
        except (SMTPException, OSError) as e:
            logger.warning(f"Email notification to user {user.pk} failed: {e}")
    return sent


def push_notifications(notifications):
    from backend.monitoring.connections import registry
    from .serializers import NotificationSerializer

    pushed = 0
    for notification in notifications:
        payload = {'type': 'notification', 'data': NotificationSerializer(notification).data}
        pushed += registry.push_to_user(notification.recipient_id, payload)
    return pushed


def deliver(email_recipients, notifications, title, message, template=None, data=None):
    """Best effort: delivery problems are logged, never raised"""
    if email_recipients:
        sent = send_email_notifications(email_recipients, title, message, template, data)
        logger.debug(f"Sent {sent} notification emails")
    if notifications:
        pushed = push_notifications(notifications)
        logger.debug(f"Pushed notifications to {pushed} live connections")
