from .assembler import BootstrapAssembler, read_main_class

__all__ = ["BootstrapAssembler", "read_main_class"]
