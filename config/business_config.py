"""
业务配置接口 - 支持可替换的业务配置

新门店可以实现自己的业务配置，替换默认的初始化数据。
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any


class BusinessConfig(ABC):
    """业务配置抽象基类"""

    @abstractmethod
    def get_sample_locations(self) -> List[Dict[str, Any]]:
        """获取初始化时写入的拠点（门店）列表"""
        pass

    @abstractmethod
    def get_sample_staff(self) -> List[Dict[str, Any]]:
        """获取初始化时写入的担当员工列表"""
        pass

    @abstractmethod
    def get_default_manager(self) -> Dict[str, Any]:
        """获取初始管理员账号信息（不含密码）"""
        pass


class MoldStudioConfig(BusinessConfig):
    """手足模型工作室业务配置"""

    def get_sample_locations(self) -> List[Dict[str, Any]]:
        return [
            {"id": "1", "name": "東京本店"},
            {"id": "2", "name": "横浜店"},
            {"id": "3", "name": "大阪店"},
        ]

    def get_sample_staff(self) -> List[Dict[str, Any]]:
        return [
            {"id": "1", "name": "佐藤"},
            {"id": "2", "name": "鈴木"},
            {"id": "3", "name": "高橋"},
        ]

    def get_default_manager(self) -> Dict[str, Any]:
        return {
            "username": "manager",
            "name": "管理者",
            "role": "manager",
        }


# 全局业务配置实例（可以在 app.py 中替换）
business_config: BusinessConfig = MoldStudioConfig()
