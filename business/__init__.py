"""业务逻辑层

- lifecycle: 预约生命周期引擎（预约、顾客档案、奖励台账的一致性）
- migration: 预约内嵌个人信息到顾客档案的一次性迁移
- accounts: 员工账号与初始化
- auth: 令牌与密码原语
"""
