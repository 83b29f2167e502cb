"""Тесты chessroom/session.py"""
from chessroom.constants import BOT_PLAYER_ID, Reason, Side, Status
from chessroom.rules import AppliedMove
from chessroom.session import Session


def test_initial_clocks():
    session = Session(id="abc123", duration_minutes=3)
    assert session.remaining_ms == {Side.WHITE: 180000, Side.BLACK: 180000}
    assert session.turn is Side.WHITE
    assert session.open_side() is Side.WHITE


def test_remaining_now_is_clamped():
    session = Session(id="abc123", duration_minutes=1, last_clock_at=10.0, status=Status.ACTIVE)
    assert session.remaining_now(15.0) == 55000
    assert session.remaining_now(100.0) == 0
    # Часы не идут назад
    assert session.remaining_now(5.0) == 60000
    assert session.clocks_now(15.0) == {Side.WHITE: 55000, Side.BLACK: 60000}


def test_charge_and_record_move():
    session = Session(id="abc123", duration_minutes=1, last_clock_at=10.0, status=Status.ACTIVE)
    session.draw_offer = Side.BLACK
    assert session.charge(12.0) == 2000
    session.record_move(AppliedMove(uci="e2e4", san="e4", fen="fen-after"))
    assert session.turn is Side.BLACK
    assert session.remaining_ms[Side.WHITE] == 58000
    assert session.moves_uci == ["e2e4"]
    assert session.history == ["e4"]
    assert session.draw_offer is None
    assert session.ply == 1


def test_finish_only_once():
    session = Session(id="abc123", duration_minutes=1, status=Status.ACTIVE)
    assert session.finish("white", Reason.RESIGNATION, 5.0) is True
    assert session.finish("black", Reason.TIMEOUT, 6.0) is False
    assert session.result.winner == "white"
    assert session.finished_at == 5.0


def test_bot_turn():
    session = Session(id="abc123", duration_minutes=1, is_bot=True, status=Status.ACTIVE)
    session.players = {Side.WHITE: BOT_PLAYER_ID, Side.BLACK: "alice"}
    assert session.bot_side is Side.WHITE
    assert session.is_bot_turn
    session.status = Status.FINISHED
    assert not session.is_bot_turn
