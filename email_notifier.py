# -*- coding: utf-8 -*-
"""
電子郵件通知模組
在載入工作送出後，或輪詢達到上限放棄時寄送通知
"""

import html
import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, Any, List, Optional


class EmailNotifier:
    """電子郵件通知器類別"""

    def __init__(self,
                 smtp_server: str = "smtp.gmail.com",
                 smtp_port: int = 587,
                 from_email: Optional[str] = None,
                 from_password: Optional[str] = None):
        """
        初始化電子郵件通知器

        Args:
            smtp_server: SMTP 伺服器地址
            smtp_port: SMTP 埠號
            from_email: 發送者電子郵件
            from_password: 發送者電子郵件密碼或應用程式密碼
        """
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.from_email = from_email
        self.from_password = from_password

    def send_email(self,
                   to_email: str,
                   subject: str,
                   html_content: str,
                   cc_emails: Optional[List[str]] = None) -> bool:
        """
        發送電子郵件

        Args:
            to_email: 收件人電子郵件
            subject: 郵件主旨
            html_content: HTML 內容
            cc_emails: 副本收件人列表（可選）

        Returns:
            bool: 發送成功返回 True
        """
        if not self.from_email or not self.from_password:
            logging.error("未設定發送者電子郵件或密碼")
            return False

        msg = MIMEMultipart('alternative')
        msg['From'] = self.from_email
        msg['To'] = to_email
        msg['Subject'] = subject
        if cc_emails:
            msg['Cc'] = ', '.join(cc_emails)
        msg.attach(MIMEText(html_content, 'html', 'utf-8'))

        all_recipients = [to_email] + list(cc_emails or [])

        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
                server.starttls()
                server.login(self.from_email, self.from_password)
                server.sendmail(self.from_email, all_recipients, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logging.error(f"電子郵件發送失敗: {e}")
            return False

        logging.info(f"電子郵件發送成功 - 收件人: {', '.join(all_recipients)}")
        return True


def format_ingestion_html(result: Dict[str, Any]) -> str:
    """將 ingester 結果轉為 HTML 郵件內容"""
    data = result.get('data') or {}
    parts = [
        "<html><body style='font-family:Arial,sans-serif'>",
        f"<h2>{html.escape(str(result.get('message', '')))}</h2>",
        "<ul>",
        f"<li>匯出設定: {html.escape(str(data.get('config_id', '')))}</li>",
        f"<li>時間戳記: {html.escape(str(data.get('timestamp', '')))}</li>",
    ]
    if data.get('attempt') is not None:
        parts.append(f"<li>重試次數: {data['attempt']}</li>")
    parts.append("</ul>")

    jobs = data.get('jobs') or []
    if jobs:
        parts.append("<table style='border-collapse:collapse;font-size:14px'>")
        parts.append("<thead><tr><th style='text-align:left;padding:6px'>kind</th>"
                     "<th style='text-align:left;padding:6px'>table</th>"
                     "<th style='text-align:left;padding:6px'>job id</th></tr></thead><tbody>")
        for job in jobs:
            parts.append(
                f"<tr><td style='padding:6px'>{html.escape(job['kind'])}</td>"
                f"<td style='padding:6px'>{html.escape(job['table_id'])}</td>"
                f"<td style='padding:6px'>{html.escape(job['job_id'])}</td></tr>"
            )
        parts.append("</tbody></table>")

    parts.append("<p style='color:#666'>本郵件為系統自動通知。</p></body></html>")
    return "".join(parts)


def send_ingestion_notification(to_email: str,
                                result: Dict[str, Any],
                                smtp_config: Dict[str, Any]) -> bool:
    """
    發送 ingester 結果通知的便利函數

    Args:
        to_email: 收件人電子郵件
        result: ingester 回應內容（status / message / data）
        smtp_config: SMTP 設定（from_email, from_password, smtp_server, smtp_port）

    Returns:
        bool: 發送成功返回 True
    """
    notifier = EmailNotifier(
        smtp_server=smtp_config.get('smtp_server') or 'smtp.gmail.com',
        smtp_port=int(smtp_config.get('smtp_port') or 587),
        from_email=smtp_config.get('from_email'),
        from_password=smtp_config.get('from_password'),
    )

    config_id = (result.get('data') or {}).get('config_id', '')
    if result.get('status') == 'success':
        subject = f"✅ Datastore 備份已送出 BigQuery 載入工作（{config_id}）"
    else:
        subject = f"❌ Datastore 備份輪詢已放棄（{config_id}）"

    return notifier.send_email(to_email, subject, format_ingestion_html(result))
