"""
Email notification utilities for Provider Sync.

This module sends operator alerts for provider failures, the optional run
summary, and the welcome email a new groupware account receives with its
temporary password.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, List, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Exception raised when notification sending fails."""
    pass


def send_email(subject: str, body: str, config: Dict[str, Any],
               recipients: Optional[List[str]] = None):
    """
    Send email notification using SMTP.

    Args:
        subject: Email subject line
        body: Email body content
        config: Notification configuration dictionary
        recipients: Overrides the configured email_to list

    Raises:
        NotificationError: If SMTP is not configured or sending fails
    """
    smtp_server = config.get('smtp_server')
    smtp_port = config.get('smtp_port', 587)
    smtp_username = config.get('smtp_username')
    smtp_password = config.get('smtp_password')
    smtp_tls = config.get('smtp_tls', True)

    email_from = config.get('email_from', smtp_username)
    email_to = recipients if recipients is not None else config.get('email_to', [])

    if not smtp_server:
        raise NotificationError("SMTP server not configured")

    if isinstance(email_to, str):
        email_to = [email_to]
    if not email_to:
        raise NotificationError("No email recipients configured")

    logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")

    msg = MIMEMultipart()
    msg['From'] = email_from
    msg['To'] = ', '.join(email_to)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port)
            if smtp_tls:
                server.starttls()

        try:
            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)
            server.sendmail(email_from, email_to, msg.as_string())
        finally:
            server.quit()

    except (smtplib.SMTPException, OSError) as e:
        raise NotificationError(f"Failed to send email '{subject}': {e}")

    logger.info(f"Email notification sent successfully: {subject}")


def _send_best_effort(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """Send an operator alert; failures are logged, never raised."""
    if not config.get('enable_email', True):
        logger.debug("Email notifications disabled")
        return False

    try:
        send_email(subject, body, config)
        return True
    except NotificationError as e:
        logger.error(f"Failed to send email notification: {e}")
        return False


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send notification for sync failures.

    Args:
        title: Failure title/type
        error_message: Error description
        config: Notification configuration
        additional_info: Optional additional context

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        "Provider Sync Failure Report",
        f"Timestamp: {timestamp}",
        "",
        f"Failure Type: {title}",
        f"Error Message: {error_message}",
        ""
    ]

    if additional_info:
        body_lines.append("Additional Information:")
        for key, value in additional_info.items():
            body_lines.append(f"  {key}: {value}")
        body_lines.append("")

    body_lines.extend([
        "Please check the application logs for more detailed information.",
        "",
        "This is an automated message from Provider Sync."
    ])

    return _send_best_effort(f"Provider Sync Alert: {title}", '\n'.join(body_lines), config)


def send_provider_error_notification(
    provider_name: str,
    error_count: int,
    errors: List[str],
    config: Dict[str, Any]
) -> bool:
    """
    Send notification when a provider is aborted for too many errors.

    Args:
        provider_name: Name of the provider that failed
        error_count: Number of errors encountered
        errors: List of error messages
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        "Provider Sync Error Report",
        f"Timestamp: {timestamp}",
        "",
        f"Provider: {provider_name}",
        f"Error Count: {error_count}",
        "",
        "Error Details:"
    ]

    # Include up to 10 error messages to avoid overly long emails
    for i, error in enumerate(errors[:10], 1):
        body_lines.append(f"  {i}. {error}")

    if len(errors) > 10:
        body_lines.append(f"  ... and {len(errors) - 10} more errors")

    body_lines.extend([
        "",
        f"The sync for {provider_name} has been aborted due to excessive errors.",
        "Entities already reconciled in this run were left as they are.",
        "",
        "This is an automated message from Provider Sync."
    ])

    return _send_best_effort(f"Provider Sync Alert: {provider_name} Sync Errors", '\n'.join(body_lines), config)


def send_success_summary(sync_stats: Dict[str, Any], config: Dict[str, Any]) -> bool:
    """
    Send summary notification for a successful run.

    Args:
        sync_stats: Dictionary containing sync statistics
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_success', False):
        logger.debug("Success email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    runtime_seconds = sync_stats.get('runtime_seconds', 0)

    body_lines = [
        "Provider Sync Summary Report",
        f"Timestamp: {timestamp}",
        "",
        f"Total runtime: {runtime_seconds:.2f} seconds",
        f"Providers processed: {sync_stats.get('providers_processed', 0)}",
        f"Providers failed: {sync_stats.get('providers_failed', 0)}",
        f"Total errors: {sync_stats.get('total_errors', 0)}",
        ""
    ]

    provider_details = sync_stats.get('provider_details', {})
    if provider_details:
        body_lines.append("Provider Details:")
        for provider_name, stats in provider_details.items():
            body_lines.extend([
                f"  {provider_name}:",
                f"    Groups ensured: {stats.get('groups_ensured', 0)}",
                f"    Users ensured: {stats.get('users_ensured', 0)}",
                f"    Groups deleted: {stats.get('groups_deleted', 0)}",
                f"    Users deleted: {stats.get('users_deleted', 0)}",
                f"    Errors: {stats.get('errors', 0)}",
                ""
            ])

    body_lines.append("This is an automated message from Provider Sync.")

    return _send_best_effort("Provider Sync: Successful Completion", '\n'.join(body_lines), config)


class NewAccountNotifier:
    """
    Sends the welcome email for a freshly created groupware account.

    Unlike operator alerts, a failure here is raised to the caller: the
    account exists but its owner has no way to log in.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    def __call__(self, user, password: str, login: str):
        """
        Email the new account's credentials.

        Args:
            user: Canonical user the account was created for
            password: Temporary password
            login: Address the user signs in with

        Raises:
            NotificationError: If the email cannot be sent
        """
        if not self.config.get('enable_email', True):
            logger.debug(f"Email notifications disabled, not notifying {login}")
            return

        if not self.config.get('email_new_accounts', True):
            logger.debug(f"New account email disabled, not notifying {login}")
            return

        recipients = [user.recovery_email] if user.recovery_email else self.config.get('email_to', [])

        body = '\n'.join([
            f"Hello {user.first_name or user.username},",
            "",
            "An account has been created for you.",
            "",
            f"Login: {login}",
            f"Temporary password: {password}",
            "",
            "You will be asked to change the password the first time you sign in.",
            "",
            "This is an automated message from Provider Sync."
        ])

        send_email(f"Your new account: {login}", body, self.config, recipients=recipients)


def send_test_notification(config: Dict[str, Any]) -> bool:
    """
    Test email notification configuration by sending a test email.

    Args:
        config: Notification configuration to test

    Returns:
        True if test email sent successfully
    """
    test_body = """This is a test email from Provider Sync.

If you receive this message, your email notification configuration is working correctly.

Test details:
- SMTP Server: {}
- SMTP Port: {}
- From Address: {}

This is an automated test message.""".format(
        config.get('smtp_server', 'not configured'),
        config.get('smtp_port', 'not configured'),
        config.get('email_from', 'not configured')
    )

    try:
        send_email("Provider Sync: Configuration Test", test_body, config)
        logger.info("Test notification sent successfully")
        return True
    except NotificationError as e:
        logger.error(f"Test notification failed: {e}")
        return False
