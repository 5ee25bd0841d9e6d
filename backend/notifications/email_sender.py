"""
Weather notification content and email sending via the Resend API.
"""

from html import escape

import resend

from models.delivery import OutboundContent
from models.notification import NotificationMessage


def build_subject(message: NotificationMessage) -> str:
    return f"Weather Update for {message.data.city}"


def build_weather_text(message: NotificationMessage) -> str:
    """One-line weather summary shared by every channel."""
    weather = message.data.weather
    return (
        f"Current weather in {message.data.city}: "
        f"{weather.temperature}°C, {weather.description}"
    )


def build_weather_email(
    message: NotificationMessage, manage_url: str | None = None
) -> OutboundContent:
    """
    Build subject, plain text and HTML bodies for a weather email.

    Args:
        message: Notification being delivered
        manage_url: Optional link to manage or cancel the subscription

    Returns:
        OutboundContent ready for send_weather_email()
    """
    text = build_weather_text(message)
    if manage_url:
        text += f"\n\nManage your subscription: {manage_url}"

    return OutboundContent(
        subject=build_subject(message),
        text=text,
        html=_build_weather_html(build_weather_text(message), manage_url),
    )


def send_weather_email(
    recipient: str, content: OutboundContent, from_address: str
) -> dict:
    """
    Send one weather email.

    Args:
        recipient: Recipient email address
        content: Rendered email
        from_address: "Name <address>" sender

    Returns:
        Dictionary with 'success' (bool), 'email_id' (str if success), 'error' (str if failed)
    """
    try:
        response = resend.Emails.send({
            "from": from_address,
            "to": recipient,
            "subject": content.subject,
            "html": content.html or escape(content.text),
            "text": content.text,
        })

        return {
            'success': True,
            'email_id': response.get('id')
        }

    except Exception as e:
        return {
            'success': False,
            'error': str(e)
        }


def _build_weather_html(summary: str, manage_url: str | None) -> str:
    """
    Build HTML email body around the weather summary.

    Args:
        summary: Plain text weather summary (escaped here)
        manage_url: Optional subscription management link

    Returns:
        HTML string
    """
    html = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Weather Notification</title>
    <style>
        .container {{
            font-family: Arial, sans-serif;
            max-width: 600px;
            margin: 0 auto;
            padding: 20px;
            background-color: #f9f9f9;
        }}
        .header {{
            background-color: #4CAF50;
            color: white;
            padding: 20px;
            text-align: center;
            border-radius: 5px 5px 0 0;
        }}
        .content {{
            background-color: white;
            padding: 20px;
            border-radius: 0 0 5px 5px;
            box-shadow: 0 2px 5px rgba(0,0,0,0.1);
        }}
        .footer {{
            text-align: center;
            padding: 10px;
            color: #666;
            font-size: 12px;
        }}
        .footer a {{
            color: #2563eb;
            text-decoration: none;
        }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h2>🌤️ Weather Notification</h2>
        </div>
        <div class="content">
            <p>{escape(summary).replace(chr(10), "<br>")}</p>
        </div>
        <div class="footer">
            <p>This is an automated weather notification service.</p>
"""

    if manage_url:
        html += f"""
            <p><a href="{escape(manage_url, quote=True)}">Manage your subscription</a></p>
"""

    html += """
        </div>
    </div>
</body>
</html>
"""

    return html
