"""对话链路：目录、适配器、传输、归一化与分发。"""
