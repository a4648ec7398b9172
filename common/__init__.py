"""公共基础模块

被 database 与 business 两层共同依赖，自身不依赖任何上层模块。

- errors: 异常层级（携带 HTTP 状态码）
- fields: 字段映射、部分更新合并原语、取值校验
"""
