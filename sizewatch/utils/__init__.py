"""SizeWatch 工具模块."""
