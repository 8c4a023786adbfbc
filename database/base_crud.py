"""通用 CRUD 基类。

所有仓库继承 BaseCRUD 获得通用的增删改查能力。
每个方法都接受可选的外部 ``session``：
- 传入时在该会话内执行，不提交，由调用方控制事务；
- 未传入时自行创建短会话并提交。
"""
from typing import Optional, List, Dict, Any, Type, TypeVar
from datetime import date, datetime
from sqlalchemy.orm import Session

from .connection import DatabaseConnection

ModelT = TypeVar("ModelT")


class BaseCRUD:
    """通用 CRUD 操作基类。

    Attributes:
        conn: 数据库连接管理器。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self) -> Session:
        return self.conn.get_session()

    def get_by_id(self, model: Type[ModelT], record_id: int,
                  session: Optional[Session] = None) -> Optional[ModelT]:
        """按主键获取记录。

        Returns:
            记录对象，不存在返回 None。
        """
        def _query(sess):
            return sess.get(model, record_id)

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def get_all(self, model: Type[ModelT],
                filters: Optional[Dict[str, Any]] = None,
                order_by: Optional[Any] = None,
                limit: Optional[int] = None,
                offset: Optional[int] = None,
                session: Optional[Session] = None) -> List[ModelT]:
        """按等值条件获取记录列表。

        Args:
            model: 模型类。
            filters: 字段名到值的等值过滤条件（可选）。
            order_by: 排序列（可选）。
            limit / offset: 分页参数（可选）。

        Returns:
            记录列表。
        """
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            if order_by is not None:
                query = query.order_by(order_by)
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)
            return query.all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def count(self, model: Type[ModelT],
              filters: Optional[Dict[str, Any]] = None,
              session: Optional[Session] = None) -> int:
        """统计满足等值条件的记录数。"""
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            return query.count()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def create(self, model: Type[ModelT],
               session: Optional[Session] = None, **kwargs) -> ModelT:
        """创建记录。

        Returns:
            新创建的记录对象（已分配主键）。
        """
        def _do(sess):
            record = model(**kwargs)
            sess.add(record)
            sess.flush()
            sess.refresh(record)
            return record

        if session:
            return _do(session)

        with self._get_session() as sess:
            record = _do(sess)
            sess.commit()
            return record

    def update_by_id(self, model: Type[ModelT], record_id: int,
                     session: Optional[Session] = None,
                     **kwargs) -> Optional[ModelT]:
        """按主键更新字段。

        Returns:
            更新后的记录对象，不存在返回 None。
        """
        def _do(sess):
            record = sess.get(model, record_id)
            if record is None:
                return None
            for key, value in kwargs.items():
                setattr(record, key, value)
            sess.flush()
            sess.refresh(record)
            return record

        if session:
            return _do(session)

        with self._get_session() as sess:
            record = _do(sess)
            if record is not None:
                sess.commit()
            return record

    def delete_by_id(self, model: Type[ModelT], record_id: int,
                     session: Optional[Session] = None) -> bool:
        """按主键删除记录。

        Returns:
            是否删除成功。
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
            if deleted:
                sess.commit()
            return deleted

    @staticmethod
    def _parse_date(date_value: Any, field_name: str = "Date") -> date:
        """解析日期值。

        Args:
            date_value: 日期值（str、date 或 datetime 对象）。
            field_name: 字段名称（用于错误提示）。

        Returns:
            date 对象。

        Raises:
            ValueError: 格式无效或缺失。
        """
        if isinstance(date_value, datetime):
            return date_value.date()
        if isinstance(date_value, date):
            return date_value
        if isinstance(date_value, str):
            try:
                return datetime.strptime(date_value, "%Y-%m-%d").date()
            except ValueError:
                raise ValueError(
                    f"Invalid date format: {date_value}, "
                    f"expected YYYY-MM-DD"
                )
        raise ValueError(f"{field_name} is required")
