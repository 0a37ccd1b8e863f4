"""
Browser Service Module

Headless Chrome fallback for article pages whose photo or body only
appears after JavaScript runs. The rendered DOM goes through the same
extraction rules as the plain HTTP path.
"""

import time
from typing import Optional

from selenium import webdriver
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.support.ui import WebDriverWait

from config import settings
from data.models import ArticleDetail
from services.extraction import extract_detail
from utils.logger import get_logger

logger = get_logger(__name__)


class BrowserService:
    """Renders pages in headless Chrome and extracts article details from the live DOM."""

    def __init__(self, page_load_timeout: Optional[int] = None, settle_delay: Optional[float] = None,
                 user_agent: Optional[str] = None):
        """
        Initialize the browser service.

        Args:
            page_load_timeout: Seconds before navigation is abandoned.
            settle_delay: Seconds to wait after the document is complete, letting late requests finish.
            user_agent: Browser identity sent with every request.
        """
        self.page_load_timeout = page_load_timeout or settings.SELENIUM_PAGE_LOAD_TIMEOUT
        self.settle_delay = settings.SELENIUM_SETTLE_DELAY if settle_delay is None else settle_delay
        self.user_agent = user_agent or settings.USER_AGENT

    def _build_driver(self):
        chrome_options = Options()
        chrome_options.add_argument('--headless=new')
        chrome_options.add_argument(f'user-agent={self.user_agent}')
        chrome_options.add_argument('--disable-blink-features=AutomationControlled')
        chrome_options.add_argument('--disable-gpu')
        chrome_options.add_argument('--no-sandbox')
        chrome_options.add_argument('--disable-dev-shm-usage')
        chrome_options.add_argument('--log-level=3')
        chrome_options.add_experimental_option('excludeSwitches', ['enable-logging'])

        service = Service(log_output=None)
        driver = webdriver.Chrome(options=chrome_options, service=service)
        driver.set_page_load_timeout(self.page_load_timeout)
        return driver

    def render(self, url: str) -> Optional[str]:
        """
        Load a page and return its rendered HTML.

        Args:
            url: Page to load.

        Returns:
            Optional[str]: The DOM after scripts ran, or None if the browser failed.
        """
        driver = None
        try:
            driver = self._build_driver()
            driver.get(url)
            WebDriverWait(driver, self.page_load_timeout).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )
            if self.settle_delay:
                time.sleep(self.settle_delay)
            return driver.page_source

        except Exception as e:
            logger.error(f"Error rendering {url} in headless browser: {e}")
            return None

        finally:
            if driver:
                try:
                    driver.quit()
                except Exception as e:
                    logger.debug(f"Error closing browser: {e}")

    def fetch_detail(self, url: str) -> Optional[ArticleDetail]:
        html = self.render(url)
        if not html:
            return None
        detail = extract_detail(html, url, strategy="browser")
        logger.info(f"Browser extraction for {url}: image={'yes' if detail.image else 'no'}, "
                    f"{len(detail.content)} chars of content")
        return detail
