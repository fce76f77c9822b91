"""
api.py — External API functions for twitch-scrapurr
"""

import datetime as dt
import logging
from typing import Optional

import aiohttp

from config import Settings

logger = logging.getLogger("twitch_scrapurr")

TWITCH_PURPLE = 0x9146FF
HTTP_TIMEOUT = aiohttp.ClientTimeout(total=15)


async def get_twitch_access_token(settings: Settings) -> Optional[str]:
    """Obtain an app access token for the Twitch Helix API.

    Uses the client credentials flow. Requires twitch_client_id and
    twitch_client_secret to be set.

    Returns:
        str or None: The OAuth access token if successful, None otherwise
    """
    if not settings.twitch_client_id.strip() or not settings.twitch_client_secret.strip():
        logger.debug("Twitch client credentials not set, skipping profile image fetch.")
        return None

    params = {
        "client_id": settings.twitch_client_id,
        "client_secret": settings.twitch_client_secret,
        "grant_type": "client_credentials",
    }
    try:
        async with aiohttp.ClientSession(timeout=HTTP_TIMEOUT) as session:
            async with session.post("https://id.twitch.tv/oauth2/token", params=params) as response:
                if response.status == 200:
                    data = await response.json()
                    return data.get("access_token")
                logger.warning(f"Failed to get Twitch access token: {response.status}")
    except (aiohttp.ClientError, TimeoutError) as e:
        logger.error(f"Error getting Twitch access token: {e}")
    return None


async def get_twitch_profile_image(settings: Settings, username: str) -> Optional[str]:
    """Fetch the profile image URL of a Twitch user."""
    access_token = await get_twitch_access_token(settings)
    if not access_token:
        return None

    headers = {
        "Client-ID": settings.twitch_client_id,
        "Authorization": f"Bearer {access_token}",
    }
    try:
        async with aiohttp.ClientSession(timeout=HTTP_TIMEOUT) as session:
            async with session.get(
                "https://api.twitch.tv/helix/users", headers=headers, params={"login": username}
            ) as response:
                if response.status == 200:
                    data = await response.json()
                    if data.get("data"):
                        return data["data"][0].get("profile_image_url")
                else:
                    logger.warning(f"Failed to fetch Twitch profile for {username}: {response.status}")
    except (aiohttp.ClientError, TimeoutError) as e:
        logger.error(f"Error fetching Twitch profile for {username}: {e}")
    return None


async def send_discord_notification(
    settings: Settings, title: str, description: str, username: Optional[str] = None
) -> bool:
    """Post an embed to the configured Discord webhook.

    Args:
        settings: Run settings holding the webhook URL and Twitch credentials
        title: Embed title
        description: Embed body
        username: Twitch user whose profile image should be attached

    Returns:
        True if Discord accepted the message, False otherwise
    """
    if not settings.discord_webhook_url:
        logger.debug("Discord webhook URL not set, skipping webhook notification.")
        return False

    now = dt.datetime.now()
    embed = {
        "title": title,
        "description": description,
        "color": TWITCH_PURPLE,
        "fields": [{"name": "Date", "value": now.strftime("%Y-%m-%d %H:%M:%S"), "inline": True}],
        "timestamp": now.astimezone().isoformat(),
    }
    if username:
        thumbnail_url = await get_twitch_profile_image(settings, username)
        if thumbnail_url:
            embed["thumbnail"] = {"url": thumbnail_url}

    try:
        async with aiohttp.ClientSession(timeout=HTTP_TIMEOUT) as session:
            async with session.post(settings.discord_webhook_url, json={"embeds": [embed]}) as response:
                if 200 <= response.status < 300:
                    logger.debug(f"Discord notification sent: {title}")
                    return True
                logger.warning(
                    f"Failed to send Discord notification: {response.status} {await response.text()}"
                )
    except (aiohttp.ClientError, TimeoutError) as e:
        logger.error(f"Error sending Discord notification: {e}")
    return False
