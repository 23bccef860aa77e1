"""Notification service (Mailgun/SendGrid email, Twilio SMS). Every sender returns True when the message was accepted."""
import logging

import httpx

from app.config import get_settings

log = logging.getLogger("uvicorn.error")


def send_email(to_email: str, subject: str, html_content: str, text_content: str | None = None) -> bool:
    """Send email via Mailgun (preferred) or SendGrid. Returns False when nothing is configured."""
    settings = get_settings()
    if settings.notifications_dry_run:
        log.info("[Email] Dry run: to=%s subject=%s", to_email, subject)
        return True
    has_key = bool(settings.mailgun_api_key)
    has_domain = bool(settings.mailgun_domain)
    if has_key and has_domain:
        return _send_email_mailgun(to_email, subject, html_content, text_content=text_content, settings=settings)
    if settings.sendgrid_api_key:
        return _send_email_sendgrid(to_email, subject, html_content, text_content=text_content, settings=settings)
    log.warning(
        "[Email] NOT SENT: to=%s subject=%s. MAILGUN_API_KEY=%s MAILGUN_DOMAIN=%s.",
        to_email,
        subject,
        "set" if has_key else "MISSING",
        "set" if has_domain else "MISSING",
    )
    return False


MAILGUN_US_BASE = "https://api.mailgun.net"
MAILGUN_EU_BASE = "https://api.eu.mailgun.net"


def _send_email_mailgun(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None):
    if settings is None:
        settings = get_settings()
    try:
        base = (settings.mailgun_base_url or MAILGUN_US_BASE).strip().rstrip("/")
        domain = (settings.mailgun_domain or "").strip().lower()
        from_addr = (settings.mailgun_from_email or "").strip()
        from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
        if domain and from_domain != domain:
            from_addr = f"noreply@{domain}"
        from_email = f"{settings.mailgun_from_name} <{from_addr}>"
        url = f"{base}/v3/{domain}/messages"
        data = {
            "from": from_email,
            "to": to_email,
            "subject": subject,
            "text": text_content or "",
            "html": html_content or "",
        }
        with httpx.Client(timeout=10.0) as client:
            r = client.post(url, auth=("api", settings.mailgun_api_key), data=data)
            if 200 <= r.status_code < 300:
                log.info("[Mailgun] Sent: to=%s status=%s", to_email, r.status_code)
                return True
            if r.status_code == 401 and base == MAILGUN_US_BASE:
                log.info("[Mailgun] 401 with US endpoint. Retrying with EU endpoint...")
                r2 = client.post(f"{MAILGUN_EU_BASE}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
                if 200 <= r2.status_code < 300:
                    return True
                log.warning("[Mailgun] EU request failed: status=%s body=%s", r2.status_code, r2.text[:500])
                return False
            log.warning("[Mailgun] API failed: status=%s to=%s body=%s", r.status_code, to_email, r.text[:500])
            return False
    except httpx.HTTPError as e:
        log.warning("[Mailgun] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False


def _send_email_sendgrid(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings=None) -> bool:
    if settings is None:
        settings = get_settings()
    try:
        from sendgrid import SendGridAPIClient
        from sendgrid.helpers.mail import Mail

        message = Mail(
            from_email=(settings.sendgrid_from_email, settings.sendgrid_from_name),
            to_emails=to_email,
            subject=subject,
            html_content=html_content,
            plain_text_content=text_content or "",
        )
        sg = SendGridAPIClient(settings.sendgrid_api_key)
        sg.send(message)
        return True
    except Exception as e:
        log.warning("[SendGrid] Exception: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False


def send_sms(to_phone: str, body: str) -> bool:
    """SMS via Twilio."""
    settings = get_settings()
    if settings.notifications_dry_run:
        log.info("[SMS] Dry run: to=%s", to_phone)
        return True
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        log.warning("[SMS] NOT SENT: to=%s. TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN missing.", to_phone)
        return False
    from twilio.base.exceptions import TwilioException
    from twilio.rest import Client

    try:
        client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
        client.messages.create(body=body, from_=settings.twilio_from_phone_number, to=to_phone)
        return True
    except TwilioException as e:
        log.warning("[SMS] Twilio error: to=%s error=%s", to_phone, e)
        return False


def send_pin_code(to_phone: str, pin_code: str) -> bool:
    minutes = get_settings().pin_code_expire_minutes
    return send_sms(to_phone, f"Your ParkShare PIN code is {pin_code}. It expires in {minutes} minutes.")


def send_welcome_email(to_email: str, username: str) -> bool:
    subject = "Welcome to ParkShare!"
    text = f"Hi {username}, welcome to ParkShare. Your account is confirmed: you can now rent parkings or share your own."
    html = f"""
    <p>Hi {username},</p>
    <p>Welcome to <strong>ParkShare</strong>. Your account is confirmed.</p>
    <p>You can now rent parking spots or share your own.</p>
    <p>— ParkShare</p>
    """
    return send_email(to_email, subject, html, text_content=text)


def send_email_confirmation(to_email: str, username: str, url: str) -> bool:
    days = get_settings().email_confirmation_expire_days
    subject = "Please confirm your email address."
    text = f"Hi {username}, confirm your email address by opening {url} (valid for {days} days)."
    html = f"""
    <p>Hi {username},</p>
    <p>Please confirm your email address by clicking <a href="{url}">this link</a>.</p>
    <p>The link is valid for {days} days.</p>
    <p>— ParkShare</p>
    """
    return send_email(to_email, subject, html, text_content=text)


def send_forgot_password(to_email: str, username: str, url: str) -> bool:
    minutes = get_settings().password_reset_expire_minutes
    subject = f"Your password reset token (valid for only {minutes} minutes)"
    text = f"Hi {username}, reset your password at {url}. If you did not ask for it, ignore this email."
    html = f"""
    <p>Hi {username},</p>
    <p>Forgot your password? <a href="{url}">Reset it here</a> within {minutes} minutes.</p>
    <p>If you did not ask for it, you can ignore this email.</p>
    <p>— ParkShare</p>
    """
    return send_email(to_email, subject, html, text_content=text)


def send_parking_validated(to_email: str, username: str, parking_title: str) -> bool:
    subject = "Your parking request was validated"
    text = f"Hi {username}, your parking '{parking_title}' was validated and is now visible to renters."
    html = f"""
    <p>Hi {username},</p>
    <p>Your parking <strong>{parking_title}</strong> was validated and is now visible to renters.</p>
    <p>— ParkShare</p>
    """
    return send_email(to_email, subject, html, text_content=text)


def send_parking_reserved(to_email: str, owner_name: str, renter_name: str, parking_title: str, reservation_id: int, started_at: str) -> bool:
    subject = f"{renter_name} has reserved your parking."
    text = f"Hi {owner_name}, {renter_name} reserved '{parking_title}' at {started_at} (reservation #{reservation_id})."
    html = f"""
    <p>Hi {owner_name},</p>
    <p><strong>{renter_name}</strong> reserved your parking <strong>{parking_title}</strong> at {started_at}.</p>
    <p>Reservation #{reservation_id}</p>
    <p>— ParkShare</p>
    """
    return send_email(to_email, subject, html, text_content=text)


def send_parking_reservation_ended(to_email: str, owner_name: str, renter_name: str, parking_title: str, bill: str) -> bool:
    subject = f"{renter_name} has ended the reservation of your parking."
    text = f"Hi {owner_name}, {renter_name} ended the reservation of '{parking_title}'. Bill: {bill}."
    html = f"""
    <p>Hi {owner_name},</p>
    <p><strong>{renter_name}</strong> ended the reservation of <strong>{parking_title}</strong>.</p>
    <p>Bill: {bill}</p>
    <p>— ParkShare</p>
    """
    return send_email(to_email, subject, html, text_content=text)
