"""SizeWatch 服务层."""
