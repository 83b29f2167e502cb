"""Исключения сервиса."""


class ChessroomError(Exception):
    """Базовая ошибка chessroom."""


class EvaluatorError(ChessroomError):
    """Движок недоступен или не вернул ход."""


class StoreError(ChessroomError):
    """Запись не найдена в хранилище."""
