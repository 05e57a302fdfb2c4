"""
Core primitives of the component pipeline.

Each stage is a small module that can be used and tested on its own:
- ingest: component bytes from files, drops and example fetches
- transpiler: the external transpiler contract
- resources: in-memory resource handles
- rewriter: relinking generated source to those handles
- module_loader: loading generated source as a module
- exports: discovering callable exports
- invocation: calling exports with free-text arguments
- activity_log: the log surface
"""
