from essayeur.infrastructure.compiler.solc_compiler import SolcCompiler, parse_imports

__all__ = ["SolcCompiler", "parse_imports"]
