"""
A pretty-printer for Juice values.
"""

from juice.juice_datatypes import (
    JuiceArray, JuiceObject, Method, NativeFunction, Prototype, Trait, Void
)


class Printer:
    """Formats Juice values as readable, source-like strings."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format a value."""
        return self._format(obj, level, set())

    def display(self, obj):
        """Like pformat, but a top-level string prints without quotes (print/str)."""
        if isinstance(obj, str):
            return obj
        return self.pformat(obj)

    def _format(self, obj, level, seen):
        handler = self._get_handler(obj)
        return handler(obj, level, seen)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        # Fast path for singletons
        if obj is Void: return self._pformat_void

        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, bool): return self._pformat_bool
        if isinstance(obj, (int, float)): return self._pformat_number
        # Default to Python's repr for unknown host types
        return lambda o, l, s: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            bool: self._pformat_bool,
            int: self._pformat_number,
            float: self._pformat_number,
            type(None): self._pformat_null,
            JuiceArray: self._pformat_array,
            JuiceObject: self._pformat_object,
            Method: self._pformat_method,
            NativeFunction: self._pformat_native,
            Prototype: self._pformat_prototype,
            Trait: self._pformat_trait,
        }

    def _pformat_number(self, obj, level, seen):
        number = float(obj)
        if number.is_integer():
            return str(int(number))
        return repr(number)

    def _pformat_str(self, obj, level, seen):
        escaped = (obj.replace('\\', '\\\\').replace('"', '\\"')
                      .replace('\n', '\\n').replace('\t', '\\t'))
        return f'"{escaped}"'

    def _pformat_bool(self, obj, level, seen):
        return 'true' if obj else 'false'

    def _pformat_null(self, obj, level, seen):
        return 'null'

    def _pformat_void(self, obj, level, seen):
        return 'void'

    def _pformat_array(self, obj, level, seen):
        if id(obj) in seen:
            return '[...]'
        seen = seen | {id(obj)}
        items = ", ".join(self._format(item, level + 1, seen) for item in obj)
        return f"[{items}]"

    def _pformat_object(self, obj, level, seen):
        prefix = f"{obj.type_name} " if obj.type_name else ""
        if id(obj) in seen:
            return f"{prefix}{{...}}"
        if not obj.fields:
            return f"{prefix}{{}}"
        seen = seen | {id(obj)}
        fields = ", ".join(
            f"{name} = {self._format(value, level + 1, seen)}" for name, value in obj.fields.items()
        )
        return f"{prefix}{{ {fields} }}"

    def _pformat_method(self, obj, level, seen):
        if obj.this is None:
            return f"<method {obj.qualified_name} (unbound)>"
        return f"<method {obj.qualified_name}>"

    def _pformat_native(self, obj, level, seen):
        return f"<native fn {obj.name}>"

    def _pformat_prototype(self, obj, level, seen):
        return f"<object {obj.name}>"

    def _pformat_trait(self, obj, level, seen):
        return f"<trait {obj.name}>"
