"""
WordPress content generation service.

Thin typed wrapper over the wp/* backend endpoints. Every call goes through
SessionManager.request, so expired access tokens are refreshed transparently.
"""

import logging
from typing import Optional, List

from client.api_client import json_body
from client.auth.session_manager import SessionManager
from shared.models import (
    EmptyResponse, WordPressConfig, WordPressAuthStartResponse,
    WordPressAuthStatusResponse, WordPressSiteURLResponse,
    WordPressGenerateRequest, WordPressGenerateResponse, WordPressGeneration
)

logger = logging.getLogger(__name__)


class WordPressService:
    """Connects a WordPress site and generates blog posts for the current user."""

    def __init__(self, session_manager: SessionManager):
        self.session_manager = session_manager

    async def start_authorization(self) -> WordPressAuthStartResponse:
        """Begin the WordPress OAuth flow; the caller opens auth_url in a browser."""
        return await self.session_manager.request('wp/auth/start', 'GET', None, WordPressAuthStartResponse)

    async def is_authorized(self) -> bool:
        response = await self.session_manager.request('wp/auth/status', 'GET', None, WordPressAuthStatusResponse)
        return response.wp_auth_status

    async def revoke_authorization(self) -> None:
        await self.session_manager.request('wp/auth/revoke', 'POST', None, EmptyResponse)
        logger.info("WordPress authorization revoked")

    async def get_site_url(self) -> Optional[str]:
        response = await self.session_manager.request('wp/site-url', 'GET', None, WordPressSiteURLResponse)
        return response.site_url

    async def set_site_url(self, site_url: str) -> None:
        await self.session_manager.request(
            'wp/site-url', 'POST', json_body({'siteUrl': site_url}), EmptyResponse
        )
        logger.info(f"WordPress site URL set to {site_url}")

    async def get_config(self) -> WordPressConfig:
        return await self.session_manager.request('wp/config', 'GET', None, WordPressConfig)

    async def save_config(self, config: WordPressConfig) -> None:
        await self.session_manager.request('wp/config', 'POST', json_body(config), EmptyResponse)
        logger.info("WordPress generation settings saved")

    async def generate(
        self,
        prompt: str,
        config: Optional[WordPressConfig] = None,
        site_url: Optional[str] = None
    ) -> List[WordPressGeneration]:
        """
        Generate blog posts for a prompt.

        Args:
            prompt: Topic or full prompt text
            config: Generation settings, defaults to WordPressConfig()
            site_url: Target site, if the server should publish there

        Returns:
            The generated posts, possibly empty
        """
        config = config or WordPressConfig()
        request = WordPressGenerateRequest(prompt=prompt, model=config.model, config=config, site_url=site_url)
        logger.info(f"Generating content with model {config.model}")

        response = await self.session_manager.request(
            'wp/generate', 'POST', json_body(request), WordPressGenerateResponse
        )
        logger.info(f"Received {len(response.generations)} generation(s)")
        return response.generations
