"""Record Store の例外定義。

ストア層の失敗は全て RecordStoreError の派生として呼び出し側へ伝播する。
表示層（API）がこれを HTTP ステータスに変換する。
"""


class RecordStoreError(Exception):
    """Record Store 由来の例外の基底クラス。"""


class NotFoundError(RecordStoreError):
    """指定IDのレコードが存在しない。"""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ValidationError(RecordStoreError):
    """必須項目の欠落や不正な値。"""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class PersistenceError(RecordStoreError):
    """永続化層の読み書き失敗（I/O、シリアライズ、DBエラー）。"""


class PartialWriteError(PersistenceError):
    """複合書き込みの一部だけが反映された状態。

    組み込みのバックエンドは log_wear を原子的に実行するため発生しないが、
    外部から書き込まれたデータの修復は reconcile_wear_counts() で行う。
    """
