from __future__ import annotations

from typing import List

from . import ssa


def _op(value) -> str:
    if value is None:
        return "<none>"
    return value.operand_name()


def format_instr(instr: ssa.Instruction) -> str:
    if isinstance(instr, ssa.Alloc):
        kind = "new" if instr.heap else "local"
        comment = f" ({instr.comment})" if instr.comment else ""
        return f"  {instr.name} = {kind} {instr.type.elem}{comment}"
    if isinstance(instr, ssa.MakeSlice):
        cap = f", {_op(instr.cap)}" if instr.cap is not None else ""
        return f"  {instr.name} = make {instr.type} {_op(instr.len)}{cap}"
    if isinstance(instr, ssa.MakeMap):
        return f"  {instr.name} = make {instr.type}"
    if isinstance(instr, ssa.MakeClosure):
        bindings = ", ".join(_op(b) for b in instr.bindings)
        return f"  {instr.name} = make closure {instr.func.full_name()} [{bindings}]"
    if isinstance(instr, ssa.Phi):
        edges = ", ".join(
            f"{pred.index}: {_op(edge)}" for pred, edge in zip(instr.block.preds, instr.edges)
        )
        comment = f" #{instr.comment}" if instr.comment else ""
        return f"  {instr.name} = phi [{edges}]{comment}"
    if isinstance(instr, ssa.Call):
        args = ", ".join(_op(a) for a in instr.args)
        return f"  {instr.name} = {_op(instr.callee)}({args})"
    if isinstance(instr, ssa.BinOp):
        return f"  {instr.name} = {_op(instr.x)} {instr.op} {_op(instr.y)}"
    if isinstance(instr, ssa.UnOp):
        return f"  {instr.name} = {instr.op}{_op(instr.x)}"
    if isinstance(instr, ssa.IndexAddr):
        return f"  {instr.name} = &{_op(instr.x)}[{_op(instr.index)}]"
    if isinstance(instr, ssa.FieldAddr):
        return f"  {instr.name} = &{_op(instr.x)}.#{instr.field}"
    if isinstance(instr, (ssa.Index, ssa.Lookup)):
        return f"  {instr.name} = {_op(instr.x)}[{_op(instr.index)}]"
    if isinstance(instr, ssa.Slice):
        low = _op(instr.low) if instr.low is not None else ""
        high = _op(instr.high) if instr.high is not None else ""
        return f"  {instr.name} = slice {_op(instr.x)}[{low}:{high}]"
    if isinstance(instr, ssa.Convert):
        return f"  {instr.name} = convert {instr.type} <- {_op(instr.x)}"
    if isinstance(instr, ssa.Next):
        return f"  {instr.name} = next {instr.extract} {_op(instr.x)}"
    if isinstance(instr, ssa.Store):
        return f"  *{_op(instr.addr)} = {_op(instr.val)}"
    if isinstance(instr, ssa.MapUpdate):
        return f"  {_op(instr.map)}[{_op(instr.key)}] = {_op(instr.value)}"
    if isinstance(instr, ssa.Jump):
        return f"  jump {instr.block.succs[0].index}"
    if isinstance(instr, ssa.If):
        succs = instr.block.succs
        return f"  if {_op(instr.cond)} goto {succs[0].index} else {succs[1].index}"
    if isinstance(instr, ssa.Return):
        if instr.result is None:
            return "  return"
        return f"  return {_op(instr.result)}"
    if isinstance(instr, ssa.Panic):
        return f"  panic {_op(instr.x)}"
    return "  <invalid instr>"


def format_block(block: ssa.BasicBlock) -> str:
    preds = ", ".join(str(p.index) for p in block.preds)
    lines = [f"{block.index}: {block.comment}" + (f"  (preds {preds})" if preds else "")]
    for instr in block.instrs:
        lines.append(format_instr(instr))
    return "\n".join(lines)


def format_function(fn: ssa.Function) -> str:
    params = ", ".join(f"{p.name} {p.type}" for p in fn.params)
    lines: List[str] = [f"func {fn.full_name()}({params})"]
    if fn.synthetic:
        lines.append(f"# synthetic: {fn.synthetic}")
    for fv in fn.free_vars:
        lines.append(f"# free {fv.name} {fv.type}")
    lines.extend(format_block(block) for block in fn.blocks)
    text = "\n".join(lines)
    for anon in fn.anon_funcs:
        text += "\n\n" + format_function(anon)
    return text


def format_package(pkg: ssa.Package) -> str:
    parts = [f"package {pkg.path}"]
    parts.extend(f"var {g.operand_name()} {g.type.elem}" for g in pkg.members.values() if isinstance(g, ssa.Global))
    text = "\n".join(parts)
    funcs = [pkg.init] + list(pkg.funcs) if pkg.init is not None else list(pkg.funcs)
    for fn in funcs:
        text += "\n\n" + format_function(fn)
    return text


def format_program(prog: ssa.Program) -> str:
    return "\n\n".join(format_package(pkg) for pkg in prog.packages.values())
