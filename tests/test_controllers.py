"""Tests for the per-chat controller registry."""

from unittest.mock import AsyncMock, MagicMock, patch

from src.bot import controllers
from src.bot.security import Access


def _fake_controller() -> MagicMock:
    controller = MagicMock()
    controller.mount = AsyncMock()
    controller.unmount = AsyncMock()
    controller.close = AsyncMock()
    return controller


async def test_get_controller_builds_and_mounts() -> None:
    built = _fake_controller()
    with patch("src.bot.controllers.build_controller", return_value=built) as build:
        controller = await controllers.get_controller(123, Access(user_id="111"), AsyncMock())

    assert controller is built
    built.mount.assert_awaited_once()
    assert build.call_args.args == ("111",)


async def test_get_controller_reuses_per_chat() -> None:
    with patch(
        "src.bot.controllers.build_controller", side_effect=lambda *a, **k: _fake_controller()
    ):
        first = await controllers.get_controller(123, Access(user_id="111"), AsyncMock())
        again = await controllers.get_controller(123, Access(user_id="111"), AsyncMock())
        other = await controllers.get_controller(456, Access(user_id=None), AsyncMock())

    assert first is again
    assert other is not first


async def test_guest_controller_has_no_user() -> None:
    with patch(
        "src.bot.controllers.build_controller", return_value=_fake_controller()
    ) as build:
        await controllers.get_controller(123, Access(user_id=None), AsyncMock())
    assert build.call_args.args == (None,)


async def test_drop_controller_unmounts_and_closes() -> None:
    built = _fake_controller()
    with patch("src.bot.controllers.build_controller", return_value=built):
        await controllers.get_controller(123, Access(user_id="111"), AsyncMock())

    assert await controllers.drop_controller(123) is True
    built.unmount.assert_awaited_once()
    built.close.assert_awaited_once()
    assert await controllers.drop_controller(123) is False


async def test_shutdown_all() -> None:
    with patch(
        "src.bot.controllers.build_controller", side_effect=lambda *a, **k: _fake_controller()
    ):
        await controllers.get_controller(1, Access(user_id="1"), AsyncMock())
        await controllers.get_controller(2, Access(user_id="2"), AsyncMock())

    assert await controllers.shutdown_all() == 2
    assert controllers._controllers == {}
