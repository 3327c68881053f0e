from django.dispatch import Signal

# Sent when a post-commit fan-out fails.
# kwargs: type_name, recipients, error
fanout_failed = Signal()
