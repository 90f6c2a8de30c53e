"""
Two-pass assembler for the pathgroup assembly language.

Pass 1 lays out labels in the .text and .data sections; pass 2 resolves
operands against the finished symbol table.

Syntax summary:

    ; comment              # also a comment
    .data
    msg:    .asciz "hi\\n"
    buf:    .space 16
    .text
    _start: mov r2, msg
            ldb r5, [r2+1]
            bne r5, 'i', fail
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..errors import AssemblyError
from .program import (
    INSTRUCTION_SIZE, OPERAND_KINDS, REGISTERS, WORD_MASK,
    Immediate, Instruction, MemoryRef, Operand, Program, Register,
)


_LABEL_RE = re.compile(r"^([A-Za-z_.$][\w.$]*)\s*:")
_SYMBOL_RE = re.compile(r"^([A-Za-z_.$][\w.$]*)\s*(?:([+-])\s*(\w+))?$")
_NUMBER_RE = re.compile(r"^[+-]?(0[xX][0-9a-fA-F]+|0[bB][01]+|\d+)$")

_DATA_DIRECTIVES = (".ascii", ".asciz", ".byte", ".word", ".space", ".align")


@dataclass
class _Item:
    kind: str           # "instr" or a data directive
    line: int
    address: int
    head: str
    args: str


def _strip_comment(line: str) -> str:
    quote = None
    escaped = False
    for i, ch in enumerate(line):
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch in ";#":
            return line[:i]
    return line


def _split_operands(text: str) -> list[str]:
    parts, current = [], []
    quote = None
    escaped = False
    depth = 0
    for ch in text:
        if quote:
            current.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "\"'":
            quote = ch
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return parts


def _decode_escapes(body: str) -> bytes:
    return body.encode("latin-1").decode("unicode_escape").encode("latin-1")


class Assembler:
    """Assembles one source text. Use :func:`assemble` instead of instantiating directly."""

    def __init__(self, name: str = "<string>", text_base: int = 0x1000, data_base: int = 0x10000):
        self.name = name
        self.text_base = text_base
        self.data_base = data_base
        self.symbols: dict[str, int] = {}
        self.items: list[_Item] = []
        self.entry_label: Optional[tuple[str, int]] = None

    def error(self, message: str, line: Optional[int]) -> AssemblyError:
        return AssemblyError(message, line=line, name=self.name)

    # ------------------------------------------------------------------
    # Pass 1
    # ------------------------------------------------------------------

    def layout(self, source: str):
        section = "text"
        pc = {"text": self.text_base, "data": self.data_base}

        for lineno, raw in enumerate(source.splitlines(), start=1):
            line = _strip_comment(raw).strip()
            while True:
                m = _LABEL_RE.match(line)
                if not m:
                    break
                label = m.group(1)
                if label in self.symbols:
                    raise self.error(f"duplicate label '{label}'", lineno)
                self.symbols[label] = pc[section]
                line = line[m.end():].strip()
            if not line:
                continue

            fields = line.split(None, 1)
            head = fields[0].lower()
            args = fields[1].strip() if len(fields) > 1 else ""

            if head in (".text", ".data"):
                section = head[1:]
                continue
            if head == ".entry":
                self.entry_label = (args, lineno)
                continue
            if head.startswith("."):
                if head not in _DATA_DIRECTIVES:
                    raise self.error(f"unknown directive '{head}'", lineno)
                if section != "data":
                    raise self.error(f"data directive '{head}' outside .data", lineno)
                if head == ".align":
                    boundary = self.parse_number(args, lineno)
                    if boundary <= 0:
                        raise self.error("alignment must be positive", lineno)
                    pc["data"] += (-pc["data"]) % boundary
                    continue
                item = _Item(head, lineno, pc["data"], head, args)
                pc["data"] += self.data_size(item)
                self.items.append(item)
                continue

            if section != "text":
                raise self.error(f"instruction '{head}' inside .data", lineno)
            if head not in OPERAND_KINDS:
                raise self.error(f"unknown mnemonic '{head}'", lineno)
            self.items.append(_Item("instr", lineno, pc["text"], head, args))
            pc["text"] += INSTRUCTION_SIZE

    def data_size(self, item: _Item) -> int:
        if item.kind in (".ascii", ".asciz"):
            size = len(self.parse_string(item.args, item.line))
            return size + 1 if item.kind == ".asciz" else size
        if item.kind == ".space":
            size = self.parse_number(item.args, item.line)
            if size < 0:
                raise self.error(f".space size must not be negative, got {size}", item.line)
            return size
        count = len(_split_operands(item.args))
        if count == 0:
            raise self.error(f"{item.kind} needs at least one value", item.line)
        return count if item.kind == ".byte" else 4 * count

    # ------------------------------------------------------------------
    # Literals
    # ------------------------------------------------------------------

    def parse_number(self, token: str, line: int) -> int:
        token = token.strip()
        if not _NUMBER_RE.match(token):
            raise self.error(f"expected a number, got '{token}'", line)
        sign = -1 if token.startswith("-") else 1
        digits = token.lstrip("+-").lower()
        if digits.startswith("0x"):
            return sign * int(digits[2:], 16)
        if digits.startswith("0b"):
            return sign * int(digits[2:], 2)
        return sign * int(digits, 10)

    def parse_string(self, token: str, line: int) -> bytes:
        token = token.strip()
        if len(token) < 2 or token[0] != '"' or token[-1] != '"':
            raise self.error(f"expected a string literal, got '{token}'", line)
        try:
            return _decode_escapes(token[1:-1])
        except (UnicodeEncodeError, UnicodeDecodeError) as exc:
            raise self.error(f"bad string literal: {exc}", line) from None

    def parse_char(self, token: str, line: int) -> int:
        try:
            value = _decode_escapes(token[1:-1])
        except (UnicodeEncodeError, UnicodeDecodeError) as exc:
            raise self.error(f"bad character literal: {exc}", line) from None
        if len(value) != 1:
            raise self.error(f"character literal must be one byte: {token}", line)
        return value[0]

    def parse_value(self, token: str, line: int) -> Immediate:
        """Number, character literal, or ``label[+/-offset]``."""
        token = token.strip()
        if len(token) >= 3 and token[0] == "'" and token[-1] == "'":
            return Immediate(self.parse_char(token, line))
        if _NUMBER_RE.match(token):
            return Immediate(self.parse_number(token, line) & WORD_MASK)
        m = _SYMBOL_RE.match(token)
        if m and m.group(1).lower() not in REGISTERS:
            label = m.group(1)
            if label not in self.symbols:
                raise self.error(f"unknown label '{label}'", line)
            value = self.symbols[label]
            if m.group(2):
                offset = self.parse_number(m.group(3), line)
                value = value + offset if m.group(2) == "+" else value - offset
            return Immediate(value & WORD_MASK, label=token.replace(" ", ""))
        raise self.error(f"bad operand '{token}'", line)

    def parse_memory(self, token: str, line: int) -> MemoryRef:
        inner = token[1:-1].strip()
        if not inner:
            raise self.error("empty memory reference", line)
        m = re.match(r"^(\w+)\s*(?:([+-])\s*(.+))?$", inner)
        if m and m.group(1).lower() in REGISTERS:
            base = Register(m.group(1).lower())
            offset = 0
            if m.group(2):
                offset = self.parse_value(m.group(3), line).value
                if offset > WORD_MASK >> 1:
                    offset -= WORD_MASK + 1
                if m.group(2) == "-":
                    offset = -offset
            return MemoryRef(base, offset)
        return MemoryRef(None, self.parse_value(inner, line).value)

    def parse_operand(self, token: str, kind: str, line: int) -> Operand:
        is_register = token.lower() in REGISTERS
        is_memory = token.startswith("[") and token.endswith("]")
        if kind == "reg":
            if not is_register:
                raise self.error(f"expected a register, got '{token}'", line)
            return Register(token.lower())
        if kind == "mem":
            if not is_memory:
                raise self.error(f"expected a memory reference, got '{token}'", line)
            return self.parse_memory(token, line)
        if is_memory:
            raise self.error(f"unexpected memory reference '{token}'", line)
        if is_register:
            if kind == "label":
                raise self.error(f"expected a label or address, got register '{token}'", line)
            return Register(token.lower())
        return self.parse_value(token, line)

    # ------------------------------------------------------------------
    # Pass 2
    # ------------------------------------------------------------------

    def encode_data(self, item: _Item) -> bytes:
        if item.kind == ".ascii":
            return self.parse_string(item.args, item.line)
        if item.kind == ".asciz":
            return self.parse_string(item.args, item.line) + b"\x00"
        if item.kind == ".space":
            return bytes(self.parse_number(item.args, item.line))
        values = [self.parse_value(tok, item.line).value for tok in _split_operands(item.args)]
        if item.kind == ".byte":
            for value in values:
                if value > 0xFF:
                    raise self.error(f"byte value out of range: {value:#x}", item.line)
            return bytes(values)
        return b"".join(value.to_bytes(4, "little") for value in values)

    def build(self) -> Program:
        instructions: dict[int, Instruction] = {}
        data = bytearray()

        for item in self.items:
            if item.kind == "instr":
                kinds = OPERAND_KINDS[item.head]
                tokens = _split_operands(item.args)
                if len(tokens) != len(kinds):
                    raise self.error(
                        f"'{item.head}' takes {len(kinds)} operand(s), got {len(tokens)}", item.line
                    )
                operands = tuple(
                    self.parse_operand(tok, kind, item.line) for tok, kind in zip(tokens, kinds)
                )
                text = f"{item.head} {item.args}".strip()
                instructions[item.address] = Instruction(
                    item.address, item.head, operands, item.line, text
                )
            else:
                offset = item.address - self.data_base
                if len(data) < offset:
                    data.extend(bytes(offset - len(data)))
                data.extend(self.encode_data(item))

        if not instructions:
            raise self.error("program has no instructions", None)

        if self.entry_label is not None:
            label, line = self.entry_label
            if label not in self.symbols:
                raise self.error(f"unknown entry label '{label}'", line)
            entry = self.symbols[label]
        elif "_start" in self.symbols:
            entry = self.symbols["_start"]
        elif "main" in self.symbols:
            entry = self.symbols["main"]
        else:
            entry = self.text_base
        if entry not in instructions:
            raise self.error(f"entry point {entry:#x} is not an instruction", None)

        return Program(
            instructions=instructions,
            symbols=dict(self.symbols),
            data=bytes(data),
            text_base=self.text_base,
            data_base=self.data_base,
            entry=entry,
            name=self.name,
        )


def assemble(source: str, name: str = "<string>", text_base: int = 0x1000,
             data_base: int = 0x10000) -> Program:
    """Assemble source text into a Program. Raises AssemblyError."""
    assembler = Assembler(name=name, text_base=text_base, data_base=data_base)
    assembler.layout(source)
    return assembler.build()


def assemble_file(path: Union[str, Path], **kwargs) -> Program:
    path = Path(path)
    return assemble(path.read_text(), name=path.name, **kwargs)
