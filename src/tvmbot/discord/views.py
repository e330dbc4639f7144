"""Discord UI views: yes/no buttons guarding destructive host commands.

ConfirmView: Yes/No for cycle creation and starting the night.
"""

from __future__ import annotations

import logging

import discord

from tvmbot.core.cycle import ConfirmResult

logger = logging.getLogger(__name__)


class ConfirmView(discord.ui.View):
    """Yes/No buttons answered only by the user who ran the command.

    ``result`` stays TIMED_OUT unless a button is pressed before the
    timeout expires.
    """

    def __init__(self, *, original_user_id: int, timeout: float) -> None:
        super().__init__(timeout=timeout)
        self.original_user_id = original_user_id
        self.result = ConfirmResult.TIMED_OUT

    def _disable_all(self) -> None:
        for item in self.children:
            if isinstance(item, discord.ui.Button):
                item.disabled = True

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.original_user_id:
            await interaction.response.send_message(
                "Only the person who ran the command can answer this.",
                ephemeral=True,
            )
            return False
        return True

    async def _finish(self, interaction: discord.Interaction, result: ConfirmResult) -> None:
        self.result = result
        self._disable_all()
        await interaction.response.edit_message(view=self)
        self.stop()

    @discord.ui.button(label="Yes", style=discord.ButtonStyle.green, emoji="\u2705")
    async def yes(
        self,
        interaction: discord.Interaction,
        button: discord.ui.Button,  # noqa: ARG002
    ) -> None:
        await self._finish(interaction, ConfirmResult.CONFIRMED)

    @discord.ui.button(label="No", style=discord.ButtonStyle.red, emoji="\u274c")
    async def no(
        self,
        interaction: discord.Interaction,
        button: discord.ui.Button,  # noqa: ARG002
    ) -> None:
        await self._finish(interaction, ConfirmResult.DECLINED)

    async def on_timeout(self) -> None:
        self._disable_all()
        logger.info("confirm_view_timed_out user=%s", self.original_user_id)


async def ask_yes_no(
    interaction: discord.Interaction, prompt: str, timeout: float
) -> ConfirmResult:
    """Post ``prompt`` with Yes/No buttons as a follow-up and wait for the answer.

    The interaction must already be deferred.
    """
    view = ConfirmView(original_user_id=interaction.user.id, timeout=timeout)
    await interaction.followup.send(prompt, view=view)
    await view.wait()
    return view.result
