"""通用 CRUD 基类。

为各子仓库提供与具体模型无关的增删改查能力。
所有方法都接受可选的外部会话：传入时在该会话内执行且不提交，
由调用方统一提交；未传入时自行开启会话并提交。
"""
from typing import Optional, List, Dict, Any, Type

from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .models import Base


class BaseCRUD:
    """通用 CRUD 基类。

    Attributes:
        conn: 数据库连接管理器。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self) -> Session:
        """获取新的数据库会话。"""
        return self.conn.get_session()

    def get_by_id(self, model: Type[Base], record_id: Any,
                  session: Optional[Session] = None) -> Optional[Base]:
        """按主键获取单条记录。

        Args:
            model: ORM 模型类。
            record_id: 主键值。
            session: 外部会话（可选）。

        Returns:
            模型对象，不存在返回 None。
        """
        if session:
            return session.get(model, record_id)

        with self._get_session() as sess:
            return sess.get(model, record_id)

    def get_all(self, model: Type[Base],
                filters: Optional[Dict[str, Any]] = None,
                session: Optional[Session] = None) -> List[Base]:
        """获取全部记录（可按字段等值过滤）。

        Args:
            model: ORM 模型类。
            filters: 字段等值过滤条件（可选）。
            session: 外部会话（可选）。

        Returns:
            模型对象列表。
        """
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            return query.all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def update_by_id(self, model: Type[Base], record_id: Any,
                     session: Optional[Session] = None,
                     **fields: Any) -> Optional[Base]:
        """按主键更新记录的指定字段。

        Returns:
            更新后的模型对象，不存在返回 None。
        """
        def _do(sess):
            record = sess.get(model, record_id)
            if record is None:
                return None
            for key, value in fields.items():
                setattr(record, key, value)
            sess.flush()
            return record

        if session:
            return _do(session)

        with self._get_session() as sess:
            record = _do(sess)
            if record is None:
                return None
            sess.commit()
            sess.refresh(record)
            return record

    def delete_by_id(self, model: Type[Base], record_id: Any,
                     session: Optional[Session] = None) -> bool:
        """按主键删除记录。

        Returns:
            是否删除了记录。
        """
        def _do(sess):
            record = sess.get(model, record_id)
            if record is None:
                return False
            sess.delete(record)
            sess.flush()
            return True

        if session:
            return _do(session)

        with self._get_session() as sess:
            deleted = _do(sess)
            sess.commit()
            return deleted

    def count(self, model: Type[Base],
              session: Optional[Session] = None) -> int:
        """统计记录数。"""
        if session:
            return session.query(model).count()

        with self._get_session() as sess:
            return sess.query(model).count()
