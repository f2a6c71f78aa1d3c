from rpcruntime.validation.schema import (
    CompiledSchema,
    InvalidJSONError,
    SchemaViolation,
    compile_schema,
    load_schema,
    must_load_schema,
)

__all__ = [
    "CompiledSchema",
    "InvalidJSONError",
    "SchemaViolation",
    "compile_schema",
    "load_schema",
    "must_load_schema",
]
