"""Mutation endpoints for buybot subscriptions.

Every write goes through ``SubscriberStore.edit`` so that concurrent
edits of one destination are serialized. Changes to the set of followed
tokens are followed by an index rebuild, which observes the write
because the store commits before ``edit`` returns.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import replace

from near_fanout.alerter.models import Button
from near_fanout.buybot.index import ReverseIndex
from near_fanout.buybot.models import (
    Attachment,
    AttachmentCurrency,
    BuybotSubscriber,
    Component,
    MinAmount,
    Polarity,
    SubscribedToken,
)
from near_fanout.ingestor.models import Token
from near_fanout.storage.repos import SubscriberStore

logger = logging.getLogger(__name__)


class NotSubscribedError(Exception):
    """Raised when a setter targets a token the destination does not follow."""


_POLARITY_FIELDS: dict[Polarity, str] = {
    Polarity.BUY: "buys",
    Polarity.SELL: "sells",
    Polarity.LP_ADD: "lp_add",
    Polarity.LP_REMOVE: "lp_remove",
}


class BuybotService:
    """Subscription management for one bot.

    Args:
        store: The bot's buybot subscriber store.
        index: The bot's reverse index over that store.
    """

    def __init__(self, store: SubscriberStore[BuybotSubscriber], index: ReverseIndex[BuybotSubscriber]) -> None:
        self._store = store
        self._index = index

    async def get(self, destination: int) -> BuybotSubscriber | None:
        return await self._store.get(destination)

    # Structural changes: these rebuild the index.

    async def add_token(
        self,
        destination: int,
        token: Token,
        config: SubscribedToken | None = None,
    ) -> BuybotSubscriber:
        """Follow a token, creating the destination's record if needed.

        An existing subscription to the same token is kept as is unless
        ``config`` is given.

        Raises:
            SubscriberStoreError: If the write fails.
            IndexRebuildError: If the rebuild after the write fails.
        """

        def mutate(record: BuybotSubscriber) -> BuybotSubscriber:
            if token in record.tokens and config is None:
                return record
            return record.with_token(token, config or SubscribedToken())

        updated = await self._store.edit(destination, mutate, default=BuybotSubscriber)
        await self._index.rebuild()
        logger.info("Chat %s now follows %s", destination, token.to_key())
        return updated

    async def remove_token(self, destination: int, token: Token) -> bool:
        """Stop following a token. Returns False if it was not followed."""
        removed = False

        def mutate(record: BuybotSubscriber) -> BuybotSubscriber:
            nonlocal removed
            removed = token in record.tokens
            return record.without_token(token)

        await self._store.edit(destination, mutate)
        if removed:
            await self._index.rebuild()
            logger.info("Chat %s no longer follows %s", destination, token.to_key())
        return removed

    async def unsubscribe(self, destination: int) -> BuybotSubscriber | None:
        """Delete the destination's whole record."""
        removed = await self._store.remove(destination)
        await self._index.rebuild()
        return removed

    async def migrate_token(self, from_token: Token, to_token: Token) -> list[tuple[int, bool]]:
        """Move every subscription from one token to another.

        Each destination is rewritten in a single atomic write that drops
        ``from_token`` and installs its settings verbatim under
        ``to_token``, replacing any settings already there.

        Returns:
            ``(destination, enabled)`` for every migrated destination.
        """
        migrated: list[tuple[int, bool]] = []
        for destination, record in await self._store.iterate_all():
            if from_token not in record.tokens:
                continue

            moved = False

            def mutate(current: BuybotSubscriber) -> BuybotSubscriber:
                nonlocal moved
                config = current.tokens.get(from_token)
                if config is None:
                    return current
                moved = True
                return current.without_token(from_token).with_token(to_token, config)

            updated = await self._store.edit(destination, mutate)
            if moved and updated is not None:
                migrated.append((destination, updated.enabled))

        await self._index.rebuild()
        logger.info(
            "Migrated %d subscriptions from %s to %s",
            len(migrated),
            from_token.to_key(),
            to_token.to_key(),
        )
        return migrated

    # Non-structural setters: the index does not depend on these.

    async def set_enabled(self, destination: int, enabled: bool) -> BuybotSubscriber:
        updated = await self._store.edit(
            destination,
            lambda record: replace(record, enabled=enabled),
            default=BuybotSubscriber,
        )
        return updated

    async def _update_token(
        self,
        destination: int,
        token: Token,
        change: Callable[[SubscribedToken], SubscribedToken],
    ) -> SubscribedToken:
        def mutate(record: BuybotSubscriber) -> BuybotSubscriber:
            config = record.tokens.get(token)
            if config is None:
                raise NotSubscribedError(f"Chat {destination} does not follow {token.to_key()}")
            return record.with_token(token, change(config))

        updated = await self._store.edit(destination, mutate)
        if updated is None:
            raise NotSubscribedError(f"Chat {destination} has no subscriptions")
        return updated.tokens[token]

    async def set_polarity(self, destination: int, token: Token, polarity: Polarity, enabled: bool) -> SubscribedToken:
        """Toggle buys, sells, liquidity adds or liquidity removes."""
        field_name = _POLARITY_FIELDS[polarity]
        return await self._update_token(
            destination, token, lambda config: replace(config, **{field_name: enabled})
        )

    async def set_min_amount(self, destination: int, token: Token, amount: MinAmount) -> SubscribedToken:
        return await self._update_token(destination, token, lambda config: replace(config, min_amount=amount))

    async def set_attachments(
        self,
        destination: int,
        token: Token,
        attachments: Sequence[Attachment],
        currency: AttachmentCurrency | None = None,
    ) -> SubscribedToken:
        """Replace the attachment list; it is stored sorted by threshold."""

        def change(config: SubscribedToken) -> SubscribedToken:
            return replace(
                config,
                attachments=tuple(attachments),
                attachment_currency=currency or config.attachment_currency,
            )

        return await self._update_token(destination, token, change)

    async def set_components(self, destination: int, token: Token, components: Sequence[Component]) -> SubscribedToken:
        return await self._update_token(
            destination, token, lambda config: replace(config, components=tuple(components))
        )

    async def move_component(self, destination: int, token: Token, index: int, offset: int) -> SubscribedToken:
        """Move one component up (negative offset) or down, clamped to the list."""

        def change(config: SubscribedToken) -> SubscribedToken:
            components = list(config.components)
            if not 0 <= index < len(components):
                raise IndexError(f"No component at position {index}")
            target = max(0, min(len(components) - 1, index + offset))
            components.insert(target, components.pop(index))
            return replace(config, components=tuple(components))

        return await self._update_token(destination, token, change)

    async def set_links(self, destination: int, token: Token, links: Sequence[Button]) -> SubscribedToken:
        return await self._update_token(destination, token, lambda config: replace(config, links=tuple(links)))

    async def set_buttons(
        self, destination: int, token: Token, buttons: Sequence[Sequence[Button]]
    ) -> SubscribedToken:
        rows = tuple(tuple(row) for row in buttons)
        return await self._update_token(destination, token, lambda config: replace(config, buttons=rows))
