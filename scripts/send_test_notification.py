"""
Send a test email and/or SMS to check the notification providers (Mailgun/SendGrid, Twilio).
Usage: python scripts/send_test_notification.py [--email you@example.com] [--sms +41791234567]
"""
import argparse
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.config import get_settings
from app.services.notifications import send_email, send_sms


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--email", default="")
    parser.add_argument("--sms", default="")
    args = parser.parse_args()
    if not args.email and not args.sms:
        parser.print_usage()
        sys.exit(1)

    settings = get_settings()
    failed = False
    if args.email:
        provider = "Mailgun" if settings.mailgun_api_key and settings.mailgun_domain else "SendGrid"
        print(f"Sending test email to {args.email} via {provider}")
        text = "This is a test from ParkShare. If you received this, email delivery is configured correctly."
        html = f"<p>{text}</p><p>— ParkShare</p>"
        if send_email(args.email, "[ParkShare] Test email", html, text_content=text):
            print("Email accepted. Check the inbox (and spam).")
        else:
            failed = True
            print("Email failed.")
            print("  - Mailgun: use the private API key; for EU accounts set MAILGUN_BASE_URL=https://api.eu.mailgun.net")
            print("  - SendGrid: set SENDGRID_API_KEY and a verified SENDGRID_FROM_EMAIL")
    if args.sms:
        print(f"Sending test SMS to {args.sms} via Twilio")
        if send_sms(args.sms, "ParkShare test message: SMS delivery is configured correctly."):
            print("SMS accepted.")
        else:
            failed = True
            print("SMS failed. Check TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_PHONE_NUMBER.")
    if settings.notifications_dry_run:
        print("NOTIFICATIONS_DRY_RUN is on: nothing was actually delivered.")
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
