#!/usr/bin/env python3
import os, sys, ctypes
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Tuple, Union, Callable, NewType

from ply.lex import lex
from llvmlite import ir, binding

# ============================================================
# Diagnostics
# ============================================================

@dataclass
class Source:
    path: str
    text: str
    lines: List[str]

    @staticmethod
    def from_path(path: str) -> "Source":
        with open(path, "r", encoding="utf-8") as f:
            txt = f.read()
        return Source(path=os.path.abspath(path), text=txt, lines=txt.splitlines())

    @staticmethod
    def from_string(text: str, path: str = "<input>") -> "Source":
        return Source(path=path, text=text, lines=text.splitlines())

    def line_col(self, pos: int) -> Tuple[int, int]:
        line = self.text.count("\n", 0, pos) + 1
        col = pos - self.text.rfind("\n", 0, pos)
        return line, col

ANSI = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "red": "\033[31m",
    "blue": "\033[34m",
    "cyan": "\033[36m",
}

@dataclass
class Diag:
    kind: str  # "error" | "note"
    msg: str
    src: Source
    pos: int
    hint: Optional[str] = None

    def format(self, use_color: bool = True) -> str:
        c = ANSI if use_color else dict.fromkeys(ANSI, "")
        line, col = self.src.line_col(self.pos)
        code = self.src.lines[line - 1] if 1 <= line <= len(self.src.lines) else ""
        accent = c["red"] if self.kind == "error" else c["blue"]
        pad = " " * len(str(line))
        bar = f"{c['bold']}{c['blue']}|{c['reset']}"

        out = [
            f"{c['bold']}{accent}{self.kind}{c['reset']}{c['bold']}: {self.msg}{c['reset']}",
            f"{pad}{c['bold']}{c['blue']}-->{c['reset']} {self.src.path}:{line}:{col}",
            f"{pad} {bar}",
            f"{c['bold']}{c['blue']}{line}{c['reset']} {bar} {code}",
            f"{pad} {bar} {' ' * (col - 1)}{c['bold']}{accent}^{c['reset']}",
        ]
        if self.hint:
            out.append(f"{pad} {bar} {c['bold']}{c['cyan']}help:{c['reset']} {self.hint}")
        return "\n".join(out)

class ErrorSink:
    def __init__(self, use_color: bool = True) -> None:
        self.errors: List[Diag] = []
        self.use_color = use_color

    def error(self, msg: str, src: Source, pos: int, hint: Optional[str] = None):
        self.errors.append(Diag("error", msg, src, pos, hint))

    def ok(self) -> bool:
        return not self.errors

    def dump(self):
        for e in self.errors:
            print(e.format(self.use_color))
            print()

class CompileError(Exception):
    """Lexical, syntax or semantic error. Compilation stops at the first one."""

    def __init__(self, msg: str, pos: int, hint: Optional[str] = None):
        super().__init__(msg)
        self.msg = msg
        self.pos = pos
        self.hint = hint

# ============================================================
# Lexer
# ============================================================

INT_MAX = 2**31 - 1

reserved = {
    "int": "INT",
    "double": "DOUBLE",
    "fun": "FUN",
    "return": "RETURN",
    "if": "IF",
    "for": "FOR",  # reserved, no statement uses it
    "while": "WHILE",
    "var": "VAR",
    "as": "AS",
    "or": "OR",
    "and": "AND",
}

tokens = (
    # literals & ids
    "NUMBER", "DECIMAL", "NAME",

    # punctuation
    "LPAREN", "RPAREN", "LBRACE", "RBRACE",
    "COMMA", "COLON", "SEMICOLON", "ASSIGN",

    # operators
    "PLUS", "MINUS", "TIMES", "DIVIDE",
    "EQ", "NE", "LT", "LE", "GT", "GE",
) + tuple(reserved.values())

t_ignore = " \t\r"

t_EQ       = r"=="
t_NE       = r"!="
t_LE       = r"<="
t_GE       = r">="
t_LT       = r"<"
t_GT       = r">"
t_LPAREN   = r"\("
t_RPAREN   = r"\)"
t_LBRACE   = r"\{"
t_RBRACE   = r"\}"
t_COMMA    = r","
t_COLON    = r":"
t_SEMICOLON= r";"
t_ASSIGN   = r"="
t_PLUS     = r"\+"
t_MINUS    = r"-"
t_TIMES    = r"\*"
t_DIVIDE   = r"/"

def t_DECIMAL(t):
    r'\d+\.\d*'
    t.value = float(t.value)
    return t

def t_NUMBER(t):
    r'\d+'
    value = int(t.value)
    if value > INT_MAX:
        raise CompileError(f"integer literal {t.value} does not fit in 'int'", t.lexpos,
                           hint="write it as a decimal literal to get a 'double'")
    t.value = value
    return t

def t_NAME(t):
    r'[A-Za-z_][A-Za-z0-9_]*'
    t.type = reserved.get(t.value, "NAME")
    return t

def t_newline(t):
    r'\n+'
    t.lexer.lineno += len(t.value)

def t_error(t):
    ch = t.value[0]
    hint = "the only operator starting with '!' is '!='" if ch == "!" else None
    raise CompileError(f"unexpected character {ch!r}", t.lexpos, hint)

TOKEN_NAMES = {
    "NUMBER": "number",
    "DECIMAL": "decimal",
    "NAME": "identifier",
    "LPAREN": "'('", "RPAREN": "')'", "LBRACE": "'{'", "RBRACE": "'}'",
    "COMMA": "','", "COLON": "':'", "SEMICOLON": "';'", "ASSIGN": "'='",
    "PLUS": "'+'", "MINUS": "'-'", "TIMES": "'*'", "DIVIDE": "'/'",
    "EQ": "'=='", "NE": "'!='", "LT": "'<'", "LE": "'<='", "GT": "'>'", "GE": "'>='",
}
TOKEN_NAMES.update({kind: f"'{word}'" for word, kind in reserved.items()})

@dataclass
class Token:
    kind: str
    value: Union[int, float, str, None]
    pos: int

def tokenize(text: str) -> List[Token]:
    lexer = lex()
    lexer.input(text)
    out: List[Token] = []
    for t in lexer:
        payload = t.value if t.type in ("NUMBER", "DECIMAL", "NAME") else None
        out.append(Token(t.type, payload, t.lexpos))
    return out

# ============================================================
# Types
# ============================================================

@dataclass(frozen=True)
class Ty:
    name: str
    bits: int
    is_float: bool = False

    def __str__(self):
        return self.name

PRIMS: Dict[str, Ty] = {
    "int": Ty("int", 32),
    "double": Ty("double", 64, is_float=True),
}
INT = PRIMS["int"]
DOUBLE = PRIMS["double"]

# ============================================================
# AST
# ============================================================

# Handles into the Arena of the File being built.
VarId = NewType("VarId", int)
FuncId = NewType("FuncId", int)

@dataclass
class Literal:
    ty: Ty
    value: Union[int, float]
    pos: int = 0

@dataclass
class VarRef:
    ty: Ty
    var: VarId
    pos: int = 0

@dataclass
class Binary:
    ty: Ty
    op: str  # token kind of the operator
    lhs: "Expr"
    rhs: "Expr"
    pos: int = 0

@dataclass
class Negate:
    ty: Ty
    operand: "Expr"
    pos: int = 0

@dataclass
class Cast:
    ty: Ty
    operand: "Expr"
    implicit: bool = True
    pos: int = 0

@dataclass
class Call:
    ty: Ty
    function: FuncId
    args: List["Expr"]
    pos: int = 0

Expr = Union[Literal, VarRef, Binary, Negate, Cast, Call]

@dataclass
class If:
    cond: Expr
    body: List["Stmt"]

@dataclass
class While:
    cond: Expr
    body: List["Stmt"]

@dataclass
class Return:
    expr: Expr

@dataclass
class Assign:
    var: VarId
    value: Expr

@dataclass
class ExprStmt:
    expr: Expr

@dataclass
class Declare:
    var: VarId

Stmt = Union[If, While, Return, Assign, ExprStmt, Declare]

@dataclass
class VarDecl:
    name: str
    ty: Ty
    init: Optional[Expr]
    pos: int

@dataclass
class Function:
    name: str
    params: List[VarId]
    ret: Ty
    pos: int
    body: List[Stmt] = field(default_factory=list)

class Arena:
    """Owns every declaration of one File; the tree refers to them by handle."""

    def __init__(self) -> None:
        self.variables: List[VarDecl] = []
        self.functions: List[Function] = []

    def add_variable(self, decl: VarDecl) -> VarId:
        self.variables.append(decl)
        return VarId(len(self.variables) - 1)

    def add_function(self, fn: Function) -> FuncId:
        self.functions.append(fn)
        return FuncId(len(self.functions) - 1)

    def variable(self, vid: VarId) -> VarDecl:
        if not 0 <= vid < len(self.variables):
            raise KeyError(f"no variable with handle {vid}")
        return self.variables[vid]

    def function(self, fid: FuncId) -> Function:
        if not 0 <= fid < len(self.functions):
            raise KeyError(f"no function with handle {fid}")
        return self.functions[fid]

@dataclass
class File:
    arena: Arena
    functions: List[FuncId]

    def function_named(self, name: str) -> Function:
        for fid in self.functions:
            fn = self.arena.function(fid)
            if fn.name == name:
                return fn
        raise KeyError(name)

# ============================================================
# Type rules
# ============================================================

ARITH_OPS = ("PLUS", "MINUS", "TIMES", "DIVIDE")
CMP_OPS = ("LT", "LE", "GT", "GE", "EQ", "NE")
LOGIC_OPS = ("OR", "AND")

def coerce(e: Expr, ty: Ty) -> Expr:
    if e.ty == ty:
        return e
    return Cast(ty, e, implicit=True, pos=e.pos)

def common_type(lhs: Expr, rhs: Expr) -> Tuple[Expr, Expr, Ty]:
    # int -> double is the only promotion
    if lhs.ty.is_float or rhs.ty.is_float:
        return coerce(lhs, DOUBLE), coerce(rhs, DOUBLE), DOUBLE
    return lhs, rhs, INT

def make_binary(op: str, lhs: Expr, rhs: Expr, pos: int = 0) -> Binary:
    if op in LOGIC_OPS:
        # operands are reduced to truth values by codegen, no unification
        return Binary(INT, op, lhs, rhs, pos)
    lhs, rhs, ty = common_type(lhs, rhs)
    if op in CMP_OPS:
        ty = INT
    return Binary(ty, op, lhs, rhs, pos)

# ============================================================
# Parser (recursive descent + semantic analysis)
# ============================================================

class Parser:
    """Builds the typed tree in one pass.

    Names are resolved and coercions inserted while parsing, so a function
    can only call itself or functions defined above it, and a variable is
    visible from the statement after its declaration.
    """

    def __init__(self, toks: List[Token], end_pos: int = 0):
        self.toks = toks
        self.i = 0
        self.end_pos = end_pos
        self.arena = Arena()
        self.current: Optional[Function] = None
        self.functions: Dict[str, FuncId] = {}
        self.variables: Dict[str, VarId] = {}

    # ---- token cursor
    def peek(self, ahead: int = 0) -> Optional[Token]:
        j = self.i + ahead
        return self.toks[j] if j < len(self.toks) else None

    def at(self, *kinds: str) -> bool:
        t = self.peek()
        return t is not None and t.kind in kinds

    def match(self, kind: str) -> Optional[Token]:
        if self.at(kind):
            t = self.toks[self.i]
            self.i += 1
            return t
        return None

    def unexpected(self, what: str) -> CompileError:
        t = self.peek()
        if t is None:
            return CompileError(f"expected {what} but reached end of input", self.end_pos)
        return CompileError(f"expected {what} instead of {TOKEN_NAMES[t.kind]}", t.pos)

    def expect(self, kind: str) -> Token:
        t = self.match(kind)
        if t is None:
            raise self.unexpected(TOKEN_NAMES[kind])
        return t

    # ---- declarations
    def parse_file(self) -> File:
        funcs: List[FuncId] = []
        while self.peek() is not None:
            funcs.append(self.parse_function())
        return File(self.arena, funcs)

    def parse_type(self) -> Ty:
        t = self.peek()
        if t is not None and t.kind in ("INT", "DOUBLE"):
            self.i += 1
            return PRIMS[t.kind.lower()]
        raise self.unexpected("'int' or 'double'")

    def parse_param(self) -> VarDecl:
        name = self.expect("NAME")
        self.expect("COLON")
        return VarDecl(name.value, self.parse_type(), None, name.pos)

    def parse_function(self) -> FuncId:
        kw = self.expect("FUN")
        name = self.expect("NAME")
        self.expect("LPAREN")
        params: List[VarDecl] = []
        if self.at("NAME"):
            params.append(self.parse_param())
            while self.match("COMMA"):
                params.append(self.parse_param())
        self.expect("RPAREN")
        self.expect("COLON")
        ret = self.parse_type()

        if name.value in self.functions:
            raise CompileError(f"function '{name.value}' is already defined", name.pos)
        seen = set()
        for p in params:
            if p.name in seen:
                raise CompileError(f"duplicate parameter '{p.name}' in function '{name.value}'", p.pos)
            seen.add(p.name)

        fn = Function(name.value, [self.arena.add_variable(p) for p in params], ret, kw.pos)
        fid = self.arena.add_function(fn)
        # registered before the body so the body can recurse
        self.functions[fn.name] = fid
        self.current = fn
        self.variables = {p.name: vid for p, vid in zip(params, fn.params)}
        fn.body = self.parse_block()
        return fid

    def parse_block(self) -> List[Stmt]:
        self.expect("LBRACE")
        body: List[Stmt] = []
        while self.peek() is not None and not self.at("RBRACE"):
            body.append(self.parse_statement())
        self.expect("RBRACE")
        return body

    # ---- statements
    def parse_statement(self) -> Stmt:
        t = self.peek()
        if t.kind == "VAR":
            return self.parse_declaration()
        if t.kind == "RETURN":
            self.i += 1
            value = self.parse_expression()
            self.expect("SEMICOLON")
            return Return(coerce(value, self.current.ret))
        if t.kind == "IF":
            self.i += 1
            cond = self.parse_expression()
            return If(cond, self.parse_block())
        if t.kind == "WHILE":
            self.i += 1
            cond = self.parse_expression()
            return While(cond, self.parse_block())
        nxt = self.peek(1)
        if t.kind == "NAME" and nxt is not None and nxt.kind == "ASSIGN":
            return self.parse_assignment()
        value = self.parse_expression()
        self.expect("SEMICOLON")
        return ExprStmt(value)

    def parse_declaration(self) -> Declare:
        self.expect("VAR")
        name = self.expect("NAME")
        ty = self.parse_type() if self.match("COLON") else None
        init = self.parse_expression() if self.match("ASSIGN") else None
        self.expect("SEMICOLON")
        if ty is None and init is None:
            raise CompileError(f"variable '{name.value}' declared without a type", name.pos,
                               hint="add a type (': int') or an initializer")
        if ty is None:
            ty = init.ty
        if init is not None:
            init = coerce(init, ty)
        vid = self.arena.add_variable(VarDecl(name.value, ty, init, name.pos))
        self.variables[name.value] = vid
        return Declare(vid)

    def parse_assignment(self) -> Assign:
        name = self.expect("NAME")
        self.expect("ASSIGN")
        value = self.parse_expression()
        self.expect("SEMICOLON")
        vid = self.variables.get(name.value)
        if vid is None:
            raise CompileError(f"could not assign to unknown variable '{name.value}'", name.pos,
                               hint=f"declare it first with 'var {name.value} = ...;'")
        return Assign(vid, coerce(value, self.arena.variable(vid).ty))

    # ---- expressions
    def parse_expression(self) -> Expr:
        e = self.parse_or()
        kw = self.match("AS")
        if kw is None:
            return e
        return Cast(self.parse_type(), e, implicit=False, pos=kw.pos)

    def _binary(self, operand: Callable[[], Expr], *ops: str) -> Expr:
        lhs = operand()
        while self.at(*ops):
            op = self.toks[self.i]
            self.i += 1
            rhs = operand()
            lhs = make_binary(op.kind, lhs, rhs, op.pos)
        return lhs

    def parse_or(self) -> Expr:
        return self._binary(self.parse_and, "OR")

    def parse_and(self) -> Expr:
        return self._binary(self.parse_cmp, "AND")

    def parse_cmp(self) -> Expr:
        return self._binary(self.parse_add, *CMP_OPS)

    def parse_add(self) -> Expr:
        return self._binary(self.parse_mul, "PLUS", "MINUS")

    def parse_mul(self) -> Expr:
        return self._binary(self.parse_unary, "TIMES", "DIVIDE")

    def parse_unary(self) -> Expr:
        minus = self.match("MINUS")
        e = self.parse_postfix()
        if minus is None:
            return e
        return Negate(e.ty, e, minus.pos)

    def parse_postfix(self) -> Expr:
        t, nxt = self.peek(), self.peek(1)
        if t is None or t.kind != "NAME" or nxt is None or nxt.kind != "LPAREN":
            return self.parse_atom()
        self.i += 2
        args: List[Expr] = []
        if not self.at("RPAREN"):
            args.append(self.parse_expression())
            while self.match("COMMA"):
                args.append(self.parse_expression())
        self.expect("RPAREN")

        fid = self.functions.get(t.value)
        if fid is None:
            raise CompileError(f"cannot call unknown function '{t.value}'", t.pos,
                               hint="functions must be defined above their callers")
        fn = self.arena.function(fid)
        if len(args) != len(fn.params):
            raise CompileError(
                f"function '{fn.name}' takes {len(fn.params)} argument(s) but {len(args)} were given", t.pos)
        args = [coerce(a, self.arena.variable(p).ty) for a, p in zip(args, fn.params)]
        return Call(fn.ret, fid, args, t.pos)

    def parse_atom(self) -> Expr:
        t = self.peek()
        if t is None:
            raise self.unexpected("number, decimal, identifier or '('")
        if t.kind == "NUMBER":
            self.i += 1
            return Literal(INT, t.value, t.pos)
        if t.kind == "DECIMAL":
            self.i += 1
            return Literal(DOUBLE, t.value, t.pos)
        if t.kind == "NAME":
            self.i += 1
            vid = self.variables.get(t.value)
            if vid is None:
                raise CompileError(f"could not read from unknown variable '{t.value}'", t.pos)
            return VarRef(self.arena.variable(vid).ty, vid, t.pos)
        if t.kind == "LPAREN":
            self.i += 1
            e = self.parse_expression()
            self.expect("RPAREN")
            return e
        raise self.unexpected("number, decimal, identifier or '('")

# ============================================================
# Code generation (LLVM IR via llvmlite)
# ============================================================

CMP_PREDICATES = {"LT": "<", "LE": "<=", "GT": ">", "GE": ">=", "EQ": "==", "NE": "!="}

class CodeGen:
    def __init__(self, file: File, name: str = "duo_module"):
        self.file = file
        self.arena = file.arena
        self.module = ir.Module(name=name)
        self.funcs: Dict[FuncId, ir.Function] = {}

    # ----- LLVM type mapping
    def ty_to_ir(self, ty: Ty):
        if ty.is_float:
            return ir.DoubleType()
        return ir.IntType(ty.bits)

    # ----- compile
    def build(self) -> ir.Module:
        # every signature exists before any body is lowered
        for fid in self.file.functions:
            self._declare_function(fid)
        for fid in self.file.functions:
            self._define_function(fid)
        return self.module

    def _declare_function(self, fid: FuncId):
        fd = self.arena.function(fid)
        params = [self.arena.variable(p) for p in fd.params]
        func_ty = ir.FunctionType(self.ty_to_ir(fd.ret), [self.ty_to_ir(p.ty) for p in params])
        func = ir.Function(self.module, func_ty, name=fd.name)
        for arg, p in zip(func.args, params):
            arg.name = p.name
        self.funcs[fid] = func

    # ----- function body
    def _define_function(self, fid: FuncId):
        fd = self.arena.function(fid)
        func = self.funcs[fid]
        entry = func.append_basic_block("entry")
        builder = ir.IRBuilder(entry)
        # locals: handle -> stack slot
        slots: Dict[VarId, ir.AllocaInstr] = {}

        def alloca(vid: VarId) -> ir.AllocaInstr:
            decl = self.arena.variable(vid)
            with builder.goto_entry_block():
                ptr = builder.alloca(self.ty_to_ir(decl.ty), name=decl.name)
            slots[vid] = ptr
            return ptr

        # bind params
        for arg, vid in zip(func.args, fd.params):
            builder.store(arg, alloca(vid))

        def emit_expr(e: Expr) -> ir.Value:
            if isinstance(e, Literal):
                return ir.Constant(self.ty_to_ir(e.ty), e.value)
            if isinstance(e, VarRef):
                return builder.load(slots[e.var], name=self.arena.variable(e.var).name)
            if isinstance(e, Cast):
                v = emit_expr(e.operand)
                return cast_value(builder, v, e.operand.ty, e.ty)
            if isinstance(e, Negate):
                v = emit_expr(e.operand)
                return builder.fneg(v) if e.ty.is_float else builder.neg(v)
            if isinstance(e, Call):
                args = [emit_expr(a) for a in e.args]
                return builder.call(self.funcs[e.function], args, name="call")
            if isinstance(e, Binary):
                return emit_binary(e)
            raise RuntimeError(f"unsupported expression {e!r}")

        def emit_binary(e: Binary) -> ir.Value:
            lv = emit_expr(e.lhs)
            rv = emit_expr(e.rhs)
            op = e.op
            if op in LOGIC_OPS:
                # no short-circuit; 'and' combines with or_ just like 'or'
                res = builder.or_(to_bool(builder, lv, e.lhs.ty), to_bool(builder, rv, e.rhs.ty))
                return builder.zext(res, self.ty_to_ir(e.ty))
            if op in CMP_OPS:
                pred = CMP_PREDICATES[op]
                if e.lhs.ty.is_float:
                    cmp = builder.fcmp_unordered(pred, lv, rv)
                else:
                    cmp = builder.icmp_signed(pred, lv, rv)
                return builder.zext(cmp, self.ty_to_ir(e.ty))
            is_float = e.ty.is_float
            if op == "PLUS":
                return builder.fadd(lv, rv) if is_float else builder.add(lv, rv)
            if op == "MINUS":
                return builder.fsub(lv, rv) if is_float else builder.sub(lv, rv)
            if op == "TIMES":
                return builder.fmul(lv, rv) if is_float else builder.mul(lv, rv)
            if op == "DIVIDE":
                return builder.fdiv(lv, rv) if is_float else builder.sdiv(lv, rv)
            raise RuntimeError(f"unsupported operator {op}")

        def reserve(stmts: List[Stmt]):
            # dead statements emit nothing, but later code may still name their variables
            for s in stmts:
                if isinstance(s, Declare):
                    alloca(s.var)
                elif isinstance(s, (If, While)):
                    reserve(s.body)

        def emit_stmts(stmts: List[Stmt]):
            for idx, s in enumerate(stmts):
                if builder.block.is_terminated:
                    reserve(stmts[idx:])
                    return
                emit_stmt(s)

        def emit_stmt(s: Stmt):
            if isinstance(s, Declare):
                ptr = alloca(s.var)
                decl = self.arena.variable(s.var)
                if decl.init is not None:
                    builder.store(emit_expr(decl.init), ptr)
            elif isinstance(s, Assign):
                builder.store(emit_expr(s.value), slots[s.var])
            elif isinstance(s, ExprStmt):
                emit_expr(s.expr)
            elif isinstance(s, Return):
                builder.ret(emit_expr(s.expr))
            elif isinstance(s, If):
                cond = to_bool(builder, emit_expr(s.cond), s.cond.ty)
                then_bb = builder.append_basic_block("if.then")
                end_bb = builder.append_basic_block("if.end")
                builder.cbranch(cond, then_bb, end_bb)

                builder.position_at_end(then_bb)
                emit_stmts(s.body)
                if not builder.block.is_terminated:
                    builder.branch(end_bb)

                builder.position_at_end(end_bb)
            elif isinstance(s, While):
                cond_bb = builder.append_basic_block("while.cond")
                body_bb = builder.append_basic_block("while.body")
                end_bb = builder.append_basic_block("while.end")
                builder.branch(cond_bb)

                builder.position_at_end(cond_bb)
                cond = to_bool(builder, emit_expr(s.cond), s.cond.ty)
                builder.cbranch(cond, body_bb, end_bb)

                builder.position_at_end(body_bb)
                emit_stmts(s.body)
                if not builder.block.is_terminated:
                    builder.branch(cond_bb)

                builder.position_at_end(end_bb)
            else:
                raise RuntimeError(f"unsupported statement {s!r}")

        emit_stmts(fd.body)
        # falling off the end of a function is undefined
        if not builder.block.is_terminated:
            builder.unreachable()

# ---- helpers for truth values & casts

def to_bool(builder: ir.IRBuilder, v: ir.Value, ty: Ty):
    if ty.is_float:
        # une: NaN counts as true
        return builder.fcmp_unordered("!=", v, ir.Constant(v.type, 0.0))
    return builder.icmp_signed("!=", v, ir.Constant(v.type, 0))

def cast_value(builder: ir.IRBuilder, v: ir.Value, src: Ty, dst: Ty):
    if src == dst:
        return v
    if not src.is_float and dst.is_float:
        return builder.sitofp(v, ir.DoubleType())
    if src.is_float and not dst.is_float:
        return builder.fptosi(v, ir.IntType(dst.bits))
    raise RuntimeError(f"unsupported cast {src} -> {dst}")

# ============================================================
# Driver: parse, codegen, verify, emit, JIT
# ============================================================

def parse_source(src: Source) -> File:
    return Parser(tokenize(src.text), len(src.text)).parse_file()

def compile_source(text: str, path: str = "<input>") -> ir.Module:
    src = Source.from_string(text, path)
    return CodeGen(parse_source(src), name=os.path.basename(path)).build()

def verify_module(module: ir.Module) -> binding.ModuleRef:
    mod = binding.parse_assembly(str(module))
    mod.verify()
    return mod

def native_target_machine() -> binding.TargetMachine:
    binding.initialize_native_target()
    binding.initialize_native_asmprinter()
    return binding.Target.from_default_triple().create_target_machine()

def emit_object(module: ir.Module, path: str) -> None:
    tm = native_target_machine()
    module.triple = binding.get_default_triple()
    module.data_layout = str(tm.target_data)
    obj = tm.emit_object(verify_module(module))
    with open(path, "wb") as f:
        f.write(obj)

def _ctype(t):
    return ctypes.c_double if isinstance(t, ir.DoubleType) else ctypes.c_int32

class JitSession:
    """MCJIT-compiled copy of a module. Functions it hands out are only
    valid while the session is alive."""

    def __init__(self, module: ir.Module):
        self.module = module
        tm = native_target_machine()
        self.engine = binding.create_mcjit_compiler(verify_module(module), tm)
        self.engine.finalize_object()
        self.engine.run_static_constructors()

    def function(self, name: str):
        fn = self.module.globals.get(name)
        if not isinstance(fn, ir.Function):
            raise KeyError(f"no function named '{name}'")
        proto = ctypes.CFUNCTYPE(_ctype(fn.ftype.return_type), *[_ctype(a) for a in fn.ftype.args])
        return proto(self.engine.get_function_address(name))

    def __call__(self, name: str, *args):
        return self.function(name)(*args)

def _parse_run_args(module: ir.Module, name: str, raw: List[str]) -> list:
    fn = module.globals.get(name)
    if not isinstance(fn, ir.Function):
        raise KeyError(f"no function named '{name}'")
    if len(raw) != len(fn.ftype.args):
        raise ValueError(f"'{name}' takes {len(fn.ftype.args)} argument(s), got {len(raw)}")
    return [float(a) if isinstance(t, ir.DoubleType) else int(a) for t, a in zip(fn.ftype.args, raw)]

# ============================================================
# CLI
# ============================================================

EXAMPLE = r'''
fun fib(x: int): int {
    if x <= 1 {
        return 1;
    }
    return fib(x - 2) + fib(x - 1);
}
'''

USAGE = "usage: duoc [FILE] [-o OUT.ll] [--obj OUT.o] [--run NAME [ARGS...]] [--no-color]"

def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)

    path: Optional[str] = None
    out_ll: Optional[str] = None
    out_obj: Optional[str] = None
    run: Optional[Tuple[str, List[str]]] = None
    use_color = True

    # Parse args: [FILE] [-o OUT.ll] [--obj OUT.o] [--run NAME ARGS...] [--no-color]
    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-h", "--help"):
            print(USAGE)
            return 0
        if arg in ("-o", "--output", "--obj"):
            if i + 1 >= len(args):
                print(f"error: {arg} requires a path")
                return 2
            if arg == "--obj":
                out_obj = args[i + 1]
            else:
                out_ll = args[i + 1]
            i += 2
            continue
        if arg == "--run":
            if i + 1 >= len(args):
                print("error: --run requires a function name")
                return 2
            # everything after the name belongs to the call
            run = (args[i + 1], args[i + 2:])
            break
        if arg == "--no-color":
            use_color = False
            i += 1
            continue
        if arg.startswith("-"):
            print(f"error: unknown option {arg}")
            print(USAGE)
            return 2
        if path is not None:
            print("error: only one input file is supported")
            return 2
        path = arg
        i += 1

    if path is None:
        src = Source.from_string(EXAMPLE, "<example>")
    else:
        try:
            src = Source.from_path(path)
        except OSError as e:
            print(f"error: cannot read {path}: {e.strerror}")
            return 2

    es = ErrorSink(use_color)
    try:
        module = CodeGen(parse_source(src), name=os.path.basename(src.path)).build()
    except CompileError as e:
        es.error(e.msg, src, e.pos, e.hint)
    if not es.ok():
        es.dump()
        return 1

    if out_ll:
        with open(out_ll, "w", encoding="utf-8") as f:
            f.write(str(module))
        print(f"Wrote {out_ll}")
    elif run is None:
        print(str(module))

    if out_obj:
        emit_object(module, out_obj)
        print(f"Wrote {out_obj}")

    if run is not None:
        name, raw = run
        try:
            call_args = _parse_run_args(module, name, raw)
        except (KeyError, ValueError) as e:
            print(f"error: {e.args[0]}")
            return 2
        session = JitSession(module)
        print(session(name, *call_args))

    return 0


if __name__ == "__main__":
    sys.exit(main())
