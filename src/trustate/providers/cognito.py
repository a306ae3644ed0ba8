"""Cognito user pool directory for the ``custom:status`` attribute."""

from __future__ import annotations

import logging

from trustate.providers.aws_client import call_provider, get_client

logger = logging.getLogger(__name__)

STATUS_ATTRIBUTE = "custom:status"
ACTIVE_STATUS = "active"


class CognitoDirectory:
    def __init__(self, user_pool_id: str | None, client=None) -> None:
        self._user_pool_id = user_pool_id
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = get_client("cognito-idp")
        return self._client

    def _find_username(self, user_id: str) -> str | None:
        # user ids are Cognito subs; the admin API needs the username
        response = call_provider(
            "cognito-idp",
            self._get_client(),
            "list_users",
            UserPoolId=self._user_pool_id,
            Filter=f'sub = "{user_id}"',
            Limit=1,
        )
        users = response.get("Users") or []
        if not users:
            return None
        return users[0].get("Username")

    def mark_active(self, user_id: str) -> bool:
        """Set ``custom:status=active``. Returns False when nothing was updated."""
        if not self._user_pool_id:
            logger.warning("COGNITO_USER_POOL_ID not configured; skipping status update")
            return False
        if '"' in user_id or "\\" in user_id:
            logger.warning("Refusing to build Cognito filter for user id %r", user_id)
            return False

        username = self._find_username(user_id)
        if username is None:
            logger.warning("Could not find Cognito user for user_id: %s", user_id)
            return False

        call_provider(
            "cognito-idp",
            self._get_client(),
            "admin_update_user_attributes",
            UserPoolId=self._user_pool_id,
            Username=username,
            UserAttributes=[{"Name": STATUS_ATTRIBUTE, "Value": ACTIVE_STATUS}],
        )
        logger.info("Updated user %s status to %s", user_id, ACTIVE_STATUS)
        return True
