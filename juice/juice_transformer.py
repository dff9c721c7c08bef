"""
Transforms the raw koine parse tree into juice_ast nodes.
"""

import re

from juice.juice_ast import (
    Program, Block, VarDecl, ObjectDecl, TraitDecl, MethodDecl, Signature, Param, TypeRef,
    While, For, If, Break, Continue, Return, ExprStmt,
    Literal, Identifier, ArrayLiteral, ObjectLiteral, FieldInit,
    Binary, Unary, Assign, Call, MethodCall, FieldAccess, IndexAccess
)

_ESCAPES = {'n': '\n', 't': '\t', 'r': '\r', '0': '\0', '"': '"', '\\': '\\'}
_ESCAPE_RE = re.compile(r'\\(.)', re.DOTALL)


def unescape(body: str) -> str:
    """Resolves backslash escapes in a string literal body; unknown escapes keep the character."""
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


class JuiceTransformer:
    def _attach_loc(self, obj, node):
        line = node.get('line'); col = node.get('col')
        if line is not None and col is not None:
            obj.loc = {'line': line, 'col': col, 'tag': node.get('tag'), 'text': node.get('text')}
        return obj

    def _split_annotation(self, children):
        """Pulls an optional leading type_annotation off a child list."""
        if children and children[0].get('tag') == 'type_annotation':
            return self.transform(children[0]), children[1:]
        return None, children

    def transform(self, node: object) -> object:
        # Lists: transform each item
        if isinstance(node, list):
            return [self.transform(n) for n in node]

        # Primitives already in final form
        if not isinstance(node, dict):
            return node

        tag = node.get('tag')
        children = node.get('children', [])

        match tag:
            # Structural containers
            case 'program':
                return self._attach_loc(Program(self.transform(children)), node)
            case 'block':
                return self._attach_loc(Block(self.transform(children)), node)
            case 'group':
                return self.transform(children[0])

            # Declarations
            case 'object_decl':
                traits, methods = self._split_annotation(children[1:])
                decl = ObjectDecl(children[0]['text'], self.transform(methods), traits)
                return self._attach_loc(decl, node)
            case 'trait_decl':
                traits, signatures = self._split_annotation(children[1:])
                decl = TraitDecl(children[0]['text'], self.transform(signatures), traits)
                return self._attach_loc(decl, node)
            case 'method_decl':
                signature, body = self.transform(children)
                return self._attach_loc(MethodDecl(signature, body), node)
            case 'signature':
                params = [self.transform(c) for c in children[1:] if c.get('tag') == 'param']
                returns = [self.transform(c) for c in children[1:] if c.get('tag') == 'type_annotation']
                sig = Signature(children[0]['text'], params, returns[0] if returns else None)
                return self._attach_loc(sig, node)
            case 'param':
                annotation, _ = self._split_annotation(children[1:])
                return self._attach_loc(Param(children[0]['text'], annotation), node)
            case 'type_annotation':
                names = [c['text'] for c in children]
                return self._attach_loc(TypeRef(names), node)

            # Statements
            case 'var_decl':
                annotation, rest = self._split_annotation(children[1:])
                decl = VarDecl(children[0]['text'], self.transform(rest[0]), annotation)
                return self._attach_loc(decl, node)
            case 'while_stmt':
                condition, body = self.transform(children)
                return self._attach_loc(While(condition, body), node)
            case 'for_stmt':
                annotation, rest = self._split_annotation(children[1:])
                iterable, body = self.transform(rest)
                return self._attach_loc(For(children[0]['text'], iterable, body, annotation), node)
            case 'if_stmt':
                condition = self.transform(children[0])
                then_branch = self.transform(children[1])
                else_branch = None
                if len(children) > 2:
                    else_branch = self.transform(children[2])
                    if isinstance(else_branch, If):
                        # `else if` runs in its own block scope like any other branch
                        else_branch = Block([else_branch], loc=else_branch.loc)
                return self._attach_loc(If(condition, then_branch, else_branch), node)
            case 'break_stmt':
                return self._attach_loc(Break(), node)
            case 'continue_stmt':
                return self._attach_loc(Continue(), node)
            case 'return_stmt':
                value = self.transform(children[0]) if children else None
                return self._attach_loc(Return(value), node)
            case 'expression_stmt':
                return self._attach_loc(ExprStmt(self.transform(children[0])), node)

            # Expressions
            case 'assignment':
                target, value = self.transform(children)
                return self._attach_loc(Assign(target, value), node)
            case 'binary_op':
                op = node['op']
                expr = Binary(op['text'], self.transform(node['left']), self.transform(node['right']))
                return self._attach_loc(expr, op)
            case 'unary':
                return self._attach_loc(Unary(children[0]['text'], self.transform(children[1])), node)
            case 'postfix':
                return self._transform_postfix(children)
            case 'object_literal':
                type_name = None
                if children and children[0].get('tag') == 'identifier':
                    type_name = children[0]['text']
                    children = children[1:]
                return self._attach_loc(ObjectLiteral(type_name, self.transform(children)), node)
            case 'field_init':
                return self._attach_loc(FieldInit(children[0]['text'], self.transform(children[1])), node)
            case 'array_literal':
                return self._attach_loc(ArrayLiteral(self.transform(children)), node)

            # Atomics
            case 'number':
                return self._attach_loc(Literal(float(node['text'])), node)
            case 'string':
                return self._attach_loc(Literal(unescape(node['text'][1:-1])), node)
            case 'boolean':
                return self._attach_loc(Literal(node['text'] == 'true'), node)
            case 'null_literal':
                return self._attach_loc(Literal(None), node)
            case 'identifier':
                return self._attach_loc(Identifier(node['text']), node)

        raise ValueError(f"Unknown AST tag: {tag!r}")

    def _transform_postfix(self, children):
        """Folds a primary and its suffix chain into nested access and call nodes.

        A member suffix directly followed by a call suffix is a method call.
        """
        expr = self.transform(children[0])
        suffixes = children[1:]
        i = 0
        while i < len(suffixes):
            suffix = suffixes[i]
            parts = suffix.get('children', [])
            match suffix.get('tag'):
                case 'member':
                    name = parts[0]['text']
                    following = suffixes[i + 1] if i + 1 < len(suffixes) else None
                    if following is not None and following.get('tag') == 'call':
                        args = self.transform(following.get('children', []))
                        expr = self._attach_loc(MethodCall(expr, name, args), suffix)
                        i += 2
                        continue
                    expr = self._attach_loc(FieldAccess(expr, name), suffix)
                case 'call':
                    expr = self._attach_loc(Call(expr, self.transform(parts)), suffix)
                case 'index':
                    expr = self._attach_loc(IndexAccess(expr, self.transform(parts[0])), suffix)
                case other:
                    raise ValueError(f"Unknown postfix suffix: {other!r}")
            i += 1
        return expr
