import re
from typing import List

_QUALIFIED_RE = re.compile(r"[A-Za-z_$][\w$]*(?:[./][A-Za-z_$][\w$]*)+")
_URI_RE = re.compile(r"^https?://\S+$")

# string literals are matched first so comment markers inside them survive
_C_COMMENT_RE = re.compile(
    r"(\"(?:\\.|[^\"\\\n])*\"|'(?:\\.|[^'\\\n])*')|//[^\n]*|/\*.*?\*/",
    re.DOTALL,
)
_XML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)


def to_dotted(name: str) -> str:
    return name.replace("/", ".")


def qualified_names(text: str) -> List[str]:
    """Dotted names found in free text, in order of appearance.

    `javax/servlet/Filter` and `javax.servlet.Filter` both come back as
    `javax.servlet.Filter`.
    """
    out: List[str] = []
    for m in _QUALIFIED_RE.finditer(text or ""):
        out.append(to_dotted(m.group(0)))
    return out


def looks_like_uri(text: str) -> bool:
    return bool(_URI_RE.match(text or ""))


def strip_c_comments(text: str) -> str:
    """Remove // and /* */ comments, keeping line breaks so line numbers hold."""

    def repl(m: re.Match) -> str:
        if m.group(1):
            return m.group(1)
        return "\n" * m.group(0).count("\n")

    return _C_COMMENT_RE.sub(repl, text or "")


def strip_xml_comments(text: str) -> str:
    return _XML_COMMENT_RE.sub(lambda m: "\n" * m.group(0).count("\n"), text or "")
