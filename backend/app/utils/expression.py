import re
from typing import Union

Number = Union[int, float]

_ALLOWED = re.compile(r"^[0-9+\-*/().\s]*$")
_PERCENT_OF = re.compile(
    r"(\d+(?:\.\d+)?)%?\s*(?:of|percent of)\s*(\d+(?:\.\d+)?)", re.IGNORECASE
)
_TOKEN = re.compile(r"\s*(?:(\d+\.\d*|\.\d+|\d+)|(.))")

MAX_DEPTH = 100


class ExpressionError(ValueError):
    pass


def _tokenize(text: str) -> list[str]:
    tokens = []
    pos = 0
    text = text.rstrip()
    while pos < len(text):
        m = _TOKEN.match(text, pos)
        if not m:
            raise ExpressionError("Unexpected input")
        number, op = m.groups()
        if number is not None:
            tokens.append(number)
        elif op is not None:
            tokens.append(op)
        pos = m.end()
    return tokens


class _Parser:
    """
    expr   := term (('+' | '-') term)*
    term   := factor (('*' | '/') factor)*
    factor := ('+' | '-') factor | '(' expr ')' | number
    """

    def __init__(self, tokens: list[str]):
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    def peek(self):
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self):
        tok = self.peek()
        if tok is None:
            raise ExpressionError("Unexpected end of expression")
        self.pos += 1
        return tok

    def parse(self) -> float:
        if not self.tokens:
            raise ExpressionError("Empty expression")
        value = self.expr()
        if self.peek() is not None:
            raise ExpressionError(f"Unexpected token {self.peek()!r}")
        return value

    def expr(self) -> float:
        value = self.term()
        while self.peek() in ("+", "-"):
            if self.take() == "+":
                value += self.term()
            else:
                value -= self.term()
        return value

    def term(self) -> float:
        value = self.factor()
        while self.peek() in ("*", "/"):
            op = self.take()
            rhs = self.factor()
            if op == "*":
                value *= rhs
            else:
                if rhs == 0:
                    raise ExpressionError("Division by zero")
                value /= rhs
        return value

    def factor(self) -> float:
        self.depth += 1
        if self.depth > MAX_DEPTH:
            raise ExpressionError("Expression nested too deeply")
        try:
            tok = self.take()
            if tok == "-":
                return -self.factor()
            if tok == "+":
                return self.factor()
            if tok == "(":
                value = self.expr()
                if self.take() != ")":
                    raise ExpressionError("Missing closing parenthesis")
                return value
            try:
                return float(tok)
            except ValueError:
                raise ExpressionError(f"Unexpected token {tok!r}")
        finally:
            self.depth -= 1


def evaluate(expression: str) -> Number:
    """Evaluate plain arithmetic; raises ExpressionError on anything else."""
    if not _ALLOWED.match(expression):
        raise ExpressionError("Invalid characters")
    result = _Parser(_tokenize(expression)).parse()
    return _tidy(result)


def _tidy(value: float) -> Number:
    if value == int(value) and abs(value) < 1e15:
        return int(value)
    return round(value, 10)


def calculate(expression: str) -> dict:
    """
    Calculator used by the assistant.

    Returns ``{"result", "explanation"}``. Supports "15% of 1000" phrasing
    as well as ``+ - * /`` with parentheses and unary minus.
    """
    lowered = expression.lower()
    if "% of" in lowered or "percent of" in lowered:
        m = _PERCENT_OF.search(expression)
        if m:
            percentage = float(m.group(1))
            value = float(m.group(2))
            result = _tidy(percentage / 100 * value)
            return {
                "result": result,
                "explanation": f"{_tidy(percentage)}% of {_tidy(value)} = {result}",
            }

    if not _ALLOWED.match(expression):
        return {
            "result": "Invalid expression",
            "explanation": "Expression contains invalid characters. Only numbers and basic operators (+, -, *, /) are allowed.",
        }

    try:
        result = evaluate(expression)
    except (ValueError, OverflowError):
        return {
            "result": "Error",
            "explanation": "Unable to calculate expression. Please check syntax.",
        }
    return {"result": result, "explanation": f"{expression} = {result}"}
