"""SizeWatch 路由."""
