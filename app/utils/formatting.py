from dataclasses import dataclass

_RESET = "\x1b[0m"
_WHITE_ON_BLACK = "\x1b[37;40m"
_GREEN_ON_BLACK = "\x1b[32;40m"

BULLET = "✱"


@dataclass(frozen=True)
class MessageStyle:
    """
    Terminal styling applied to outbound lines.
    Passed into each build session; disabled styling yields plain text.
    """
    color: bool = True

    def _paint(self, code: str, text: str) -> str:
        if not self.color:
            return text
        return f"{code}{text}{_RESET}"

    def progress(self, text: str) -> str:
        """Progress narration line: green bullet followed by the text."""
        return self._paint(_GREEN_ON_BLACK, BULLET) + self._paint(_WHITE_ON_BLACK, f" {text}")

    def log_line(self, text: str) -> str:
        return self._paint(_WHITE_ON_BLACK, text)


PLAIN = MessageStyle(color=False)
