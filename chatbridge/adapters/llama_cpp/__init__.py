from chatbridge.adapters.llama_cpp.server import LlamaServerBridge

__all__ = ["LlamaServerBridge"]
